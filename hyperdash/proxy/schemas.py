"""
Proxy Layer Schemas

Data contracts exchanged between the REST proxy, the upstream clients and the
dashboard: candles, order books, market summaries, aggregator pairs and the
response envelope.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional
import math
import time

from pydantic import BaseModel, Field

from hyperdash.proxy.errors import InvalidRequestError


def now_ms() -> int:
    """Current Unix time in milliseconds"""
    return int(time.time() * 1000)


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce upstream numeric strings to finite floats, falling back on garbage"""
    if value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    # JSON responses cannot carry NaN or infinities
    return result if math.isfinite(result) else default


# ============================================================================
# MARKET DATA
# ============================================================================

@dataclass(frozen=True)
class Candle:
    """One OHLCV bar; time is the bar open in Unix ms"""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class OrderBookLevel:
    price: float
    size: float
    order_count: int

    @classmethod
    def from_wire(cls, level: Dict) -> "OrderBookLevel":
        """Parse an exchange level of the form {px, sz, n}"""
        return cls(
            price=to_float(level.get("px")),
            size=to_float(level.get("sz")),
            order_count=int(level.get("n") or 0),
        )


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Order book as delivered by the exchange; level order is kept as is"""
    symbol: str
    bids: List[OrderBookLevel]
    asks: List[OrderBookLevel]
    timestamp: int

    @classmethod
    def from_upstream(cls, symbol: str, payload: Dict) -> "OrderBookSnapshot":
        levels = payload.get("levels") or [[], []]
        bids = levels[0] if len(levels) > 0 else []
        asks = levels[1] if len(levels) > 1 else []
        return cls(
            symbol=payload.get("coin") or symbol,
            bids=[OrderBookLevel.from_wire(level) for level in bids if isinstance(level, dict)],
            asks=[OrderBookLevel.from_wire(level) for level in asks if isinstance(level, dict)],
            timestamp=int(payload.get("time") or now_ms()),
        )

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None


@dataclass(frozen=True)
class MarketSummary:
    """Aggregated market row shown on the dashboard market list"""
    coin: str
    perp_symbol: str
    spot_symbol: str
    price: float
    volume_24h: float
    price_change_24h: float
    market_cap: float
    liquidity: float
    source_id: str
    pair_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coin": self.coin,
            "perp": self.perp_symbol,
            "spot": self.spot_symbol,
            "price": self.price,
            "volume24h": self.volume_24h,
            "priceChange24h": self.price_change_24h,
            "marketCap": self.market_cap,
            "liquidity": self.liquidity,
            "dexId": self.source_id,
            "pairAddress": self.pair_address,
        }


@dataclass(frozen=True)
class PairSummary:
    """Aggregator trading pair normalized for the dashboard"""
    chain_id: Optional[str]
    dex_id: Optional[str]
    pair_address: Optional[str]
    base_token: Optional[Dict]
    quote_token: Optional[Dict]
    price_usd: float
    price_change: float
    volume: float
    liquidity: float
    market_cap: float
    pair_created_at: Optional[int]
    url: Optional[str]

    @classmethod
    def from_aggregator(cls, pair: Dict) -> "PairSummary":
        return cls(
            chain_id=pair.get("chainId"),
            dex_id=pair.get("dexId"),
            pair_address=pair.get("pairAddress"),
            base_token=pair.get("baseToken"),
            quote_token=pair.get("quoteToken"),
            price_usd=to_float(pair.get("priceUsd")),
            price_change=to_float((pair.get("priceChange") or {}).get("h24")),
            volume=to_float((pair.get("volume") or {}).get("h24")),
            liquidity=to_float((pair.get("liquidity") or {}).get("usd")),
            market_cap=to_float(pair.get("marketCap")),
            pair_created_at=pair.get("pairCreatedAt"),
            url=pair.get("url"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "dexId": self.dex_id,
            "pairAddress": self.pair_address,
            "baseToken": self.base_token,
            "quoteToken": self.quote_token,
            "priceUsd": self.price_usd,
            "priceChange": self.price_change,
            "volume": self.volume,
            "liquidity": self.liquidity,
            "marketCap": self.market_cap,
            "pairCreatedAt": self.pair_created_at,
            "url": self.url,
        }


# ============================================================================
# INFO REQUESTS
# ============================================================================

class InfoRequestKind(Enum):
    """Families served by POST /api/info"""
    CANDLES = "candles"
    ORDER_BOOK = "order_book"


INFO_REQUEST_TYPES: Dict[str, InfoRequestKind] = {
    "candleSnapshot": InfoRequestKind.CANDLES,
    "spotCandleSnapshot": InfoRequestKind.CANDLES,
    "l2Book": InfoRequestKind.ORDER_BOOK,
    "spotL2Book": InfoRequestKind.ORDER_BOOK,
}

_MISSING_SYMBOLS = {"", "undefined", "null"}


def clean_symbol(value: Any) -> Optional[str]:
    """Return a usable symbol or None for absent/'undefined'/'null' values"""
    if value is None:
        return None
    text = str(value).strip()
    return None if text in _MISSING_SYMBOLS else text


@dataclass(frozen=True)
class InfoRequest:
    """Validated body of POST /api/info"""
    type: str
    kind: InfoRequestKind
    coin: Optional[str]
    pair: Optional[str]
    interval: Optional[str]
    limit: Optional[int]
    req: Dict[str, Any]

    @property
    def is_spot(self) -> bool:
        return self.type.startswith("spot")

    @property
    def symbol(self) -> Optional[str]:
        if self.is_spot:
            return self.pair or self.coin
        return self.coin or self.pair

    @classmethod
    def from_payload(cls, payload: Any) -> "InfoRequest":
        """Validate a raw request body.

        The symbol is checked before the type so that a request without any
        usable symbol is rejected without further work.
        """
        if not isinstance(payload, dict):
            raise InvalidRequestError("Request body must be a JSON object")

        req = payload.get("req") or {}
        if not isinstance(req, dict):
            raise InvalidRequestError("Field 'req' must be an object")

        coin = clean_symbol(req.get("coin"))
        pair = clean_symbol(req.get("pair"))
        if coin is None and pair is None:
            raise InvalidRequestError("No valid symbol provided")

        request_type = payload.get("type")
        kind = INFO_REQUEST_TYPES.get(request_type)
        if kind is None:
            raise InvalidRequestError(f"Unsupported request type: {request_type}")

        limit = req.get("limit")
        try:
            limit = int(limit) if limit is not None else None
        except (TypeError, ValueError):
            raise InvalidRequestError(f"Invalid limit: {limit}")

        interval = req.get("interval")
        return cls(
            type=request_type,
            kind=kind,
            coin=coin,
            pair=pair,
            interval=str(interval) if interval else None,
            limit=limit,
            req=req,
        )


# ============================================================================
# API MODELS
# ============================================================================

class PositionsRequest(BaseModel):
    """Body of POST /api/hyperliquid/positions"""
    type: str = Field(default="clearinghouseState", description="Exchange info request type")
    user: str = Field(default="0x0000000000000000000000000000000000000000", description="Wallet address")

    class Config:
        json_schema_extra = {
            "example": {
                "type": "clearinghouseState",
                "user": "0x0000000000000000000000000000000000000000"
            }
        }


class ApiEnvelope(BaseModel):
    """Response envelope shared by every REST endpoint"""
    ok: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    source: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"ok": self.ok, "timestamp": self.timestamp}
        if self.ok:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.source is not None:
            payload["source"] = self.source
        return payload
