"""
Connection Gateway

Interprets the dashboard control protocol for each inbound WebSocket
connection and manages its single upstream relay:

    subscribe    close the current relay (unsubscribe first), open a new one
    unsubscribe  close the current relay, if any
    ping         reply {"channel": "pong"}

Anything else is ignored. Closing a client session always closes its relay
before the session is dropped from the registry.
"""

from collections import Counter
from typing import Any, Dict, Optional
import json
import logging

from hyperdash.config import UpstreamConfig
from hyperdash.stream.relay import Connector, RelayOpenError, UpstreamRelaySession
from hyperdash.stream.schemas import (
    PONG_FRAME,
    ControlMethod,
    Envelope,
    SessionState,
    Subscription,
    status_frame,
)
from hyperdash.stream.sessions import ClientSession, SendFn, SessionRegistry

LOG = logging.getLogger("hyperdash.stream.gateway")


class ConnectionGateway:
    """Owns client sessions and their upstream relays"""

    def __init__(self, config: Optional[UpstreamConfig] = None,
                 registry: Optional[SessionRegistry] = None,
                 connector: Optional[Connector] = None):
        self.config = config or UpstreamConfig()
        self.registry = registry if registry is not None else SessionRegistry()
        self._connector = connector
        self.stats = Counter()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def connect(self, client: str, send: SendFn) -> ClientSession:
        session = await self.registry.create_session(client, send)
        self.stats["sessions_opened"] += 1
        LOG.info("Client session %s opened for %s", session.handle, client)
        return session

    async def disconnect(self, session: ClientSession):
        """Close the session and cascade to its relay; safe to call twice"""
        async with session.lock:
            if session.state is SessionState.CLOSED:
                return
            session.state = SessionState.CLOSED
            await self._teardown_relay(session)

        await self.registry.remove_session(session.handle)
        self.stats["sessions_closed"] += 1
        LOG.info("Client session %s closed", session.handle)

    async def shutdown(self):
        sessions = self.registry.sessions()
        for session in sessions:
            await self.disconnect(session)
        if sessions:
            LOG.info("Gateway shut down, %d sessions closed", len(sessions))

    # ------------------------------------------------------------------
    # Control protocol
    # ------------------------------------------------------------------

    async def handle_message(self, session: ClientSession, raw: str):
        """Dispatch one client control message; malformed input is ignored"""
        try:
            message = json.loads(raw)
        except ValueError:
            LOG.debug("Session %s sent non-JSON message, ignored", session.handle)
            return

        if not isinstance(message, dict):
            return

        try:
            method = ControlMethod(message.get("method"))
        except ValueError:
            LOG.debug("Session %s sent unknown method %r, ignored", session.handle, message.get("method"))
            return

        if method is ControlMethod.PING:
            await self.ping(session)
        elif method is ControlMethod.SUBSCRIBE:
            try:
                subscription = Subscription.from_payload(message.get("subscription"))
            except (TypeError, ValueError) as e:
                LOG.warning("Session %s sent invalid subscription: %s", session.handle, e)
                return
            try:
                await self.subscribe(session, subscription)
            except Exception as e:
                LOG.error("Session %s subscribe failed: %s", session.handle, e, exc_info=True)
                await self._send(session, status_frame(
                    False, self.config.relay_source, reason=f"subscribe failed: {e}",
                    subscription=subscription,
                ))
        elif method is ControlMethod.UNSUBSCRIBE:
            await self.unsubscribe(session)

    async def ping(self, session: ClientSession):
        await self._send(session, dict(PONG_FRAME))

    async def subscribe(self, session: ClientSession, subscription: Subscription):
        async with session.lock:
            if session.state is SessionState.CLOSED:
                return

            await self._teardown_relay(session)

            relay = UpstreamRelaySession(
                relay_id=self.registry.next_relay_handle(),
                subscription=subscription,
                on_message=self._on_relay_message,
                on_closed=self._on_relay_closed,
                url=self.config.ws_url,
                source=self.config.relay_source,
                open_timeout=self.config.ws_open_timeout_seconds,
                connector=self._connector,
            )
            await self.registry.attach_relay(session, relay)
            session.subscription = subscription

            try:
                await relay.open()
            except RelayOpenError as e:
                await self.registry.detach_relay(session)
                session.subscription = None
                self.stats["relay_open_failures"] += 1
                LOG.error("Session %s could not subscribe %s: %s",
                          session.handle, subscription.to_payload(), e)
                await self._send(session, status_frame(
                    False, self.config.relay_source, reason=str(e), subscription=subscription
                ))
                return

            session.state = SessionState.SUBSCRIBED
            self.stats["relays_opened"] += 1
            LOG.info("Session %s subscribed to %s", session.handle, subscription.to_payload())

    async def unsubscribe(self, session: ClientSession):
        async with session.lock:
            if session.state is SessionState.CLOSED:
                return
            await self._teardown_relay(session)

    # ------------------------------------------------------------------
    # Relay callbacks
    # ------------------------------------------------------------------

    async def _on_relay_message(self, relay: UpstreamRelaySession, envelope: Envelope):
        session = self.registry.owner_of(relay.relay_id)
        if session is None or session.state is SessionState.CLOSED:
            return
        self.stats["messages_forwarded"] += 1
        await self._send(session, envelope.to_dict())

    async def _on_relay_closed(self, relay: UpstreamRelaySession, reason: str):
        session = self.registry.owner_of(relay.relay_id)
        if session is None:
            return

        async with session.lock:
            if session.relay_handle != relay.relay_id:
                return
            await self.registry.detach_relay(session)
            session.subscription = None
            if session.state is SessionState.SUBSCRIBED:
                session.state = SessionState.CONNECTED

        self.stats["relays_lost"] += 1
        await self._send(session, status_frame(
            False, self.config.relay_source, reason=reason, subscription=relay.subscription
        ))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _teardown_relay(self, session: ClientSession):
        # Caller holds session.lock
        relay = await self.registry.detach_relay(session)
        if relay is not None:
            await relay.close(send_unsubscribe=True)
            self.stats["relays_closed"] += 1
        session.subscription = None
        if session.state is SessionState.SUBSCRIBED:
            session.state = SessionState.CONNECTED

    async def _send(self, session: ClientSession, frame: Dict[str, Any]):
        try:
            await session.send(frame)
        except Exception as e:
            LOG.warning("Dropping frame for session %s: %s", session.handle, e)

    def get_status(self) -> Dict[str, Any]:
        return {
            "active_sessions": self.registry.session_count,
            "live_relays": self.registry.relay_count,
            "subscribed_symbols": self.registry.subscribed_symbols(),
            "sessions": [s.to_dict() for s in self.registry.sessions()],
            "counters": dict(self.stats),
        }
