"""
Stream Gateway Layer

Accepts dashboard WebSocket connections and relays exchange order-book
updates. Each client session owns at most one upstream relay at a time.

Flow:
    /ws → ConnectionGateway → SessionRegistry
                            ↘ UpstreamRelaySession → exchange feed
"""

from hyperdash.stream.schemas import (
    ChannelType,
    ControlMethod,
    SessionState,
    Subscription,
    Envelope,
    status_frame,
)
from hyperdash.stream.relay import UpstreamRelaySession, RelayOpenError
from hyperdash.stream.sessions import ClientSession, SessionRegistry
from hyperdash.stream.gateway import ConnectionGateway

__all__ = [
    'ChannelType',
    'ControlMethod',
    'SessionState',
    'Subscription',
    'Envelope',
    'status_frame',
    'UpstreamRelaySession',
    'RelayOpenError',
    'ClientSession',
    'SessionRegistry',
    'ConnectionGateway',
]
