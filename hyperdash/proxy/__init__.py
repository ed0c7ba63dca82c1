"""
REST Proxy Layer

Rate-limited proxy in front of the exchange info endpoint and the DEX Screener
aggregator. Normalizes third-party responses and synthesizes anchored
fallback candles.

Flow:
    Route → RateLimiter (info only) → MarketDataService → upstream clients
                                                      ↘ CandleSynthesizer
"""

from hyperdash.proxy.errors import (
    GatewayError,
    InvalidRequestError,
    UpstreamError,
    RateLimitExceeded,
)
from hyperdash.proxy.schemas import (
    Candle,
    OrderBookLevel,
    OrderBookSnapshot,
    MarketSummary,
    PairSummary,
    InfoRequest,
    InfoRequestKind,
)
from hyperdash.proxy.rate_limiter import RateLimiter, RateLimitBucket, RateDecision
from hyperdash.proxy.candles import CandleSynthesizer
from hyperdash.proxy.clients import ExchangeInfoClient, AggregatorClient
from hyperdash.proxy.service import MarketDataService

__all__ = [
    'GatewayError',
    'InvalidRequestError',
    'UpstreamError',
    'RateLimitExceeded',
    'Candle',
    'OrderBookLevel',
    'OrderBookSnapshot',
    'MarketSummary',
    'PairSummary',
    'InfoRequest',
    'InfoRequestKind',
    'RateLimiter',
    'RateLimitBucket',
    'RateDecision',
    'CandleSynthesizer',
    'ExchangeInfoClient',
    'AggregatorClient',
    'MarketDataService',
]
