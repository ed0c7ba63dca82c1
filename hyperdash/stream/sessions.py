"""
Session registry.

Arena of ClientSessions and UpstreamRelaySessions addressed by integer
handles. A session refers to its relay only through `relay_handle`; the
registry refuses to attach a second relay to a session that already owns one.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import itertools
import logging
import time

from hyperdash.stream.relay import UpstreamRelaySession
from hyperdash.stream.schemas import SessionState, Subscription

LOG = logging.getLogger("hyperdash.stream.sessions")

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(eq=False)
class ClientSession:
    """State of one inbound dashboard connection"""
    handle: int
    client: str
    send: SendFn
    state: SessionState = SessionState.CONNECTED
    subscription: Optional[Subscription] = None
    relay_handle: Optional[int] = None
    connected_at: float = field(default_factory=time.time)
    # Serializes subscribe / unsubscribe / close and relay-loss handling
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle": self.handle,
            "client": self.client,
            "state": self.state.value,
            "subscription": self.subscription.to_payload() if self.subscription else None,
            "relay": self.relay_handle,
            "connected_seconds": round(time.time() - self.connected_at, 1),
        }


class SessionRegistry:
    """Owns every live session and relay of the gateway"""

    def __init__(self):
        self._sessions: Dict[int, ClientSession] = {}
        self._relays: Dict[int, UpstreamRelaySession] = {}
        self._owners: Dict[int, int] = {}  # relay handle -> session handle
        self._session_ids = itertools.count(1)
        self._relay_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def create_session(self, client: str, send: SendFn) -> ClientSession:
        async with self._lock:
            session = ClientSession(handle=next(self._session_ids), client=client, send=send)
            self._sessions[session.handle] = session
        return session

    async def remove_session(self, handle: int) -> Optional[ClientSession]:
        async with self._lock:
            session = self._sessions.pop(handle, None)
            if session is not None and session.relay_handle is not None:
                # Caller must have closed the relay already
                LOG.error("Session %s removed while still owning relay %s", handle, session.relay_handle)
                self._owners.pop(session.relay_handle, None)
                self._relays.pop(session.relay_handle, None)
                session.relay_handle = None
        return session

    def next_relay_handle(self) -> int:
        return next(self._relay_ids)

    async def attach_relay(self, session: ClientSession, relay: UpstreamRelaySession):
        async with self._lock:
            if session.relay_handle is not None:
                raise RuntimeError(
                    f"session {session.handle} already owns relay {session.relay_handle}"
                )
            self._relays[relay.relay_id] = relay
            self._owners[relay.relay_id] = session.handle
            session.relay_handle = relay.relay_id

    async def detach_relay(self, session: ClientSession) -> Optional[UpstreamRelaySession]:
        """Remove and return the session's relay without closing it"""
        async with self._lock:
            handle = session.relay_handle
            if handle is None:
                return None
            session.relay_handle = None
            self._owners.pop(handle, None)
            return self._relays.pop(handle, None)

    def get_session(self, handle: int) -> Optional[ClientSession]:
        return self._sessions.get(handle)

    def get_relay(self, handle: int) -> Optional[UpstreamRelaySession]:
        return self._relays.get(handle)

    def owner_of(self, relay_handle: int) -> Optional[ClientSession]:
        session_handle = self._owners.get(relay_handle)
        return self._sessions.get(session_handle) if session_handle is not None else None

    def sessions(self) -> List[ClientSession]:
        return list(self._sessions.values())

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def relay_count(self) -> int:
        return len(self._relays)

    def subscribed_symbols(self) -> List[str]:
        symbols = {
            s.subscription.symbol_key for s in self._sessions.values()
            if s.subscription is not None
        }
        return sorted(symbols)
