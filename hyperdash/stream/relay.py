"""
Upstream Relay Session

One outbound WebSocket connection to the exchange realtime feed, opened on
behalf of exactly one client subscription. Every upstream JSON message is
wrapped in an Envelope and handed to the owner callback. When the upstream
side closes or errors the relay marks itself dead, closes its connection and
notifies the owner; it never reconnects on its own.
"""

from typing import Any, Awaitable, Callable, Optional
import asyncio
import json
import logging

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from hyperdash.stream.schemas import Envelope, Subscription

LOG = logging.getLogger("hyperdash.stream.relay")

# (url, open_timeout) -> connection supporting send(), close() and async iteration
Connector = Callable[[str, float], Awaitable[Any]]


async def connect_upstream(url: str, open_timeout: float):
    """Open a websockets client connection with a bounded handshake"""
    return await websockets.connect(
        url,
        open_timeout=open_timeout,
        ping_interval=20,
        ping_timeout=20,
        close_timeout=5,
    )


class RelayOpenError(Exception):
    """Upstream connection could not be established or subscribed"""


class UpstreamRelaySession:
    """Relay between one upstream feed connection and one client session"""

    def __init__(
        self,
        relay_id: int,
        subscription: Subscription,
        on_message: Callable[["UpstreamRelaySession", Envelope], Awaitable[None]],
        on_closed: Callable[["UpstreamRelaySession", str], Awaitable[None]],
        url: str,
        source: str,
        open_timeout: float = 10.0,
        connector: Optional[Connector] = None,
    ):
        self.relay_id = relay_id
        self.subscription = subscription
        self.url = url
        self.source = source
        self.open_timeout = open_timeout
        self._on_message = on_message
        self._on_closed = on_closed
        self._connector = connector or connect_upstream

        self._conn = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False
        self.alive = False
        self.unsubscribe_sent = False
        self.messages_forwarded = 0

    def __repr__(self):
        return (f"UpstreamRelaySession(id={self.relay_id}, "
                f"subscription={self.subscription.to_payload()}, alive={self.alive})")

    async def open(self):
        """Connect, send the subscribe frame and start forwarding.

        Raises RelayOpenError if the connection or the subscribe frame fails;
        no connection is left open in that case.
        """
        try:
            self._conn = await self._connector(self.url, self.open_timeout)
            await self._conn.send(json.dumps(self.subscription.subscribe_frame()))
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            await self._close_connection()
            raise RelayOpenError(f"Failed to connect to exchange feed: {e}") from e
        except asyncio.CancelledError:
            await self._close_connection()
            raise
        except Exception as e:
            await self._close_connection()
            raise RelayOpenError(f"Unexpected error opening exchange feed: {e}") from e

        self.alive = True
        self._reader = asyncio.create_task(self._read_loop(), name=f"relay-{self.relay_id}")
        LOG.info("Relay %s connected to %s for %s", self.relay_id, self.url, self.subscription.to_payload())

    async def close(self, send_unsubscribe: bool = True):
        """Stop forwarding and close the upstream connection.

        Idempotent; sends at most one unsubscribe frame. The connection is
        closed before this coroutine returns.
        """
        if self._closing:
            return
        self._closing = True

        was_alive = self.alive
        self.alive = False

        if send_unsubscribe and was_alive and self._conn is not None and not self.unsubscribe_sent:
            try:
                await self._conn.send(json.dumps(self.subscription.unsubscribe_frame()))
                self.unsubscribe_sent = True
            except (OSError, WebSocketException) as e:
                LOG.debug("Relay %s could not send unsubscribe: %s", self.relay_id, e)

        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)

        await self._close_connection()
        LOG.info("Relay %s closed (%d messages forwarded)", self.relay_id, self.messages_forwarded)

    async def _read_loop(self):
        reason = "upstream connection closed"
        try:
            async for raw in self._conn:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    LOG.warning("Relay %s skipping non-JSON upstream frame", self.relay_id)
                    continue

                self.messages_forwarded += 1
                await self._on_message(self, Envelope(
                    channel=self.subscription.channel.value,
                    data=message,
                    source=self.source,
                ))
        except ConnectionClosed as e:
            reason = f"upstream connection closed: {e}"
        except (OSError, WebSocketException) as e:
            reason = f"upstream connection error: {e}"
        except Exception as e:
            LOG.error("Relay %s forwarding failed: %s", self.relay_id, e, exc_info=True)
            reason = f"relay error: {e}"

        if self._closing:
            return

        self.alive = False
        await self._close_connection()
        LOG.warning("Relay %s lost upstream feed: %s", self.relay_id, reason)
        await self._on_closed(self, reason)

    async def _close_connection(self):
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except (OSError, WebSocketException) as e:
            LOG.debug("Relay %s error while closing upstream: %s", self.relay_id, e)
