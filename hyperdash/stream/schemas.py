"""
Stream Gateway Schemas

Control protocol, subscriptions, session states and the frames pushed down to
dashboard clients.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from hyperdash.proxy.schemas import now_ms


class ChannelType(Enum):
    """Order-book channels a client may subscribe to"""
    ORDER_BOOK = "l2Book"
    SPOT_ORDER_BOOK = "spotL2Book"


class ControlMethod(Enum):
    """Client → gateway control messages"""
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    PING = "ping"


class SessionState(Enum):
    """ClientSession lifecycle.

    CONNECTED → SUBSCRIBED → CONNECTED (unsubscribe) → SUBSCRIBED (resubscribe)
    CLOSED is terminal and reachable from any state.
    """
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


@dataclass(frozen=True)
class Subscription:
    """One order-book subscription; replaced, never merged"""
    channel: ChannelType
    coin: Optional[str] = None
    pair: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.channel, ChannelType):
            raise TypeError("channel must be a ChannelType")
        if self.symbol_key is None:
            raise ValueError(f"subscription to {self.channel.value} needs a symbol")

    @property
    def symbol_key(self) -> Optional[str]:
        if self.channel is ChannelType.SPOT_ORDER_BOOK:
            return self.pair or self.coin
        return self.coin

    @classmethod
    def from_payload(cls, payload: Any) -> "Subscription":
        """Parse the `subscription` object of a control message.

        Raises ValueError for unknown channel types or missing symbols.
        """
        if not isinstance(payload, dict):
            raise ValueError("subscription must be an object")

        channel = ChannelType(payload.get("type"))
        coin = payload.get("coin")
        pair = payload.get("pair")
        return cls(
            channel=channel,
            coin=str(coin) if coin else None,
            pair=str(pair) if pair else None,
        )

    def to_payload(self) -> Dict[str, str]:
        payload = {"type": self.channel.value}
        if self.coin is not None:
            payload["coin"] = self.coin
        if self.pair is not None:
            payload["pair"] = self.pair
        return payload

    def subscribe_frame(self) -> Dict[str, Any]:
        return {"method": ControlMethod.SUBSCRIBE.value, "subscription": self.to_payload()}

    def unsubscribe_frame(self) -> Dict[str, Any]:
        return {"method": ControlMethod.UNSUBSCRIBE.value, "subscription": self.to_payload()}


@dataclass
class Envelope:
    """Upstream message forwarded to a client"""
    channel: str
    data: Any
    source: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
        }


PONG_FRAME: Dict[str, str] = {"channel": "pong"}


def status_frame(connected: bool, source: str, reason: Optional[str] = None,
                 subscription: Optional[Subscription] = None) -> Dict[str, Any]:
    """Connectivity notice pushed when a relay cannot open or dies"""
    return Envelope(
        channel="status",
        data={
            "connected": connected,
            "reason": reason,
            "subscription": subscription.to_payload() if subscription else None,
        },
        source=source,
    ).to_dict()
