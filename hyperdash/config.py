"""
Gateway Configuration

Defines upstream endpoints, timeouts, rate limits and synthesis parameters.
Defaults live in code; deployments override them through environment variables
(see GatewayConfig.from_env).
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional
import hashlib
import json
import os


@dataclass
class UpstreamConfig:
    """Upstream exchange and aggregator endpoints"""

    # Exchange REST info endpoint and realtime feed
    info_url: str = "https://api.hyperliquid.xyz/info"
    ws_url: str = "wss://api.hyperliquid.xyz/ws"

    # Third-party aggregator
    aggregator_url: str = "https://api.dexscreener.com"

    # Bounded timeouts for every outbound call (seconds)
    http_timeout_seconds: float = 10.0
    ws_open_timeout_seconds: float = 10.0

    # Source tags attached to responses
    relay_source: str = "hyperliquid-real"


@dataclass
class RateLimitConfig:
    """Per-IP fixed window for /api/info"""

    window_ms: int = 60_000
    max_requests: int = 30

    # Expired buckets are evicted once the map grows past this size
    max_buckets: int = 10_000

    def __post_init__(self):
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be > 0, got {self.window_ms}")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be > 0, got {self.max_requests}")


@dataclass
class SynthesizerConfig:
    """Fallback candle synthesis parameters"""

    volatility: float = 0.02  # fraction of anchor price
    default_interval: str = "1h"
    default_limit: int = 50
    max_candles: int = 500

    def __post_init__(self):
        if not 0 < self.volatility < 1:
            raise ValueError(f"volatility must be in (0, 1), got {self.volatility}")


@dataclass
class MarketsConfig:
    """Markets aggregation universe and static fallbacks"""

    tokens: List[str] = field(default_factory=lambda: [
        "ETH", "BTC", "SOL", "AVAX", "ARB", "MATIC", "LINK", "UNI"
    ])

    fallback_prices: Dict[str, float] = field(default_factory=lambda: {
        "ETH": 4000.0, "BTC": 65000.0, "SOL": 200.0, "AVAX": 30.0,
        "ARB": 1.2, "MATIC": 0.8, "LINK": 15.0, "UNI": 8.0,
    })
    fallback_volume_24h: float = 1_000_000.0

    # Native token, always listed first with static values
    native_coin: str = "HYPE"
    native_price: float = 56.194
    native_volume_24h: float = 141_415_767.71

    # Per-token aggregator cache
    cache_ttl_seconds: float = 30.0


@dataclass
class GatewayConfig:
    """Complete gateway configuration"""

    host: str = "0.0.0.0"
    port: int = 3000
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    synthesizer: SynthesizerConfig = field(default_factory=SynthesizerConfig)
    markets: MarketsConfig = field(default_factory=MarketsConfig)
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "GatewayConfig":
        """Build configuration from environment variables.

        Recognised variables (all optional):
            PORT, HOST, HL_INFO_URL, HL_WS_URL, DEXSCREENER_URL,
            UPSTREAM_TIMEOUT_SECONDS, WS_OPEN_TIMEOUT_SECONDS,
            RATE_LIMIT_WINDOW_MS, RATE_LIMIT_MAX, CANDLE_VOLATILITY,
            MAX_CANDLES, MARKET_TOKENS (comma separated), MARKET_CACHE_TTL
        """
        env = os.environ if env is None else env
        config = cls()

        config.host = env.get("HOST", config.host)
        config.port = int(env.get("PORT", config.port))

        up = config.upstream
        up.info_url = env.get("HL_INFO_URL", up.info_url)
        up.ws_url = env.get("HL_WS_URL", up.ws_url)
        up.aggregator_url = env.get("DEXSCREENER_URL", up.aggregator_url)
        up.http_timeout_seconds = float(env.get("UPSTREAM_TIMEOUT_SECONDS", up.http_timeout_seconds))
        up.ws_open_timeout_seconds = float(env.get("WS_OPEN_TIMEOUT_SECONDS", up.ws_open_timeout_seconds))

        config.rate_limit = RateLimitConfig(
            window_ms=int(env.get("RATE_LIMIT_WINDOW_MS", config.rate_limit.window_ms)),
            max_requests=int(env.get("RATE_LIMIT_MAX", config.rate_limit.max_requests)),
        )
        config.synthesizer = SynthesizerConfig(
            volatility=float(env.get("CANDLE_VOLATILITY", config.synthesizer.volatility)),
            max_candles=int(env.get("MAX_CANDLES", config.synthesizer.max_candles)),
        )

        tokens = env.get("MARKET_TOKENS")
        if tokens:
            config.markets.tokens = [t.strip().upper() for t in tokens.split(",") if t.strip()]
        config.markets.cache_ttl_seconds = float(
            env.get("MARKET_CACHE_TTL", config.markets.cache_ttl_seconds)
        )

        return config

    def to_dict(self) -> Dict:
        return asdict(self)

    def get_config_hash(self) -> str:
        """Compute deterministic hash of configuration"""
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]
