"""
HyperDash Market-Data Gateway

Brokers live market data between a browser dashboard and upstream venues.

Layers:
    proxy   - rate-limited REST proxy for the exchange info endpoint and the
              DEX Screener aggregator, plus fallback candle synthesis
    stream  - WebSocket gateway relaying exchange order-book feeds, one
              upstream connection per subscribed client

Flow:
    Browser → /ws → ConnectionGateway → UpstreamRelaySession → exchange feed
    Browser → /api/* → RateLimiter → MarketDataService → exchange / aggregator
"""

__version__ = "1.0.0"
