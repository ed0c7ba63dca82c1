"""
Market Data Service

Business logic behind the REST proxy routes: market aggregation, spot pair
listing, aggregator passthroughs, positions passthrough and the unified info
dispatch (candles / order books).

Errors are raised as GatewayError subclasses; the routes render them into the
response envelope.
"""

from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

from hyperdash.config import GatewayConfig
from hyperdash.proxy.cache import TTLCache
from hyperdash.proxy.candles import CandleSynthesizer
from hyperdash.proxy.clients import AggregatorClient, ExchangeInfoClient
from hyperdash.proxy.errors import InvalidRequestError, UpstreamError
from hyperdash.proxy.schemas import (
    InfoRequest,
    InfoRequestKind,
    MarketSummary,
    OrderBookSnapshot,
    PairSummary,
    to_float,
)

LOG = logging.getLogger(__name__)

SOURCE_MARKETS = "dexscreener_api"
SOURCE_EXCHANGE = "hyperliquid-real"
SOURCE_SPOT_META = "hyperliquid-api"
SOURCE_SYNTHETIC = "synthetic-anchored:hyperliquid-mid"
SOURCE_AGGREGATOR = "dexscreener-api"
SOURCE_AGGREGATOR_EMPTY = "dexscreener-api-empty"


class MarketDataService:
    """Normalizes and fans out dashboard requests to the upstream APIs"""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        exchange: Optional[ExchangeInfoClient] = None,
        aggregator: Optional[AggregatorClient] = None,
        synthesizer: Optional[CandleSynthesizer] = None,
        market_cache: Optional[TTLCache] = None,
    ):
        self.config = config or GatewayConfig()
        self.exchange = exchange if exchange is not None else ExchangeInfoClient(self.config.upstream)
        self.aggregator = aggregator if aggregator is not None else AggregatorClient(self.config.upstream)
        self.synthesizer = synthesizer if synthesizer is not None else CandleSynthesizer(self.config.synthesizer)
        self.market_cache = market_cache if market_cache is not None else TTLCache(self.config.markets.cache_ttl_seconds)

    async def close(self):
        await self.exchange.close()
        await self.aggregator.close()

    # ------------------------------------------------------------------
    # Markets aggregation
    # ------------------------------------------------------------------

    async def get_markets(self) -> List[MarketSummary]:
        """
        Native token first, then one row per configured token in order.

        Lookups run concurrently; a failing token gets static fallback
        values and never fails the whole response.
        """
        tokens = self.config.markets.tokens
        rows = await asyncio.gather(*(self._market_for(token) for token in tokens))
        return [self._native_market()] + list(rows)

    async def _market_for(self, token: str) -> MarketSummary:
        cached = self.market_cache.get(token)
        if cached is not None:
            return cached

        try:
            pairs = await self.aggregator.search(token)
        except Exception as e:
            LOG.warning("Failed to fetch market data for %s: %s", token, e)
            return self._fallback_market(token)

        if not pairs:
            LOG.info("No aggregator pairs for %s, using fallback", token)
            return self._fallback_market(token)

        best = max(pairs, key=lambda p: to_float((p.get("volume") or {}).get("h24")))
        summary = MarketSummary(
            coin=token,
            perp_symbol=f"{token}-USD",
            spot_symbol=f"{token}/USDC",
            price=to_float(best.get("priceUsd")),
            volume_24h=to_float((best.get("volume") or {}).get("h24")),
            price_change_24h=to_float((best.get("priceChange") or {}).get("h24")),
            market_cap=to_float(best.get("fdv")),
            liquidity=to_float((best.get("liquidity") or {}).get("usd")),
            source_id=best.get("dexId") or "unknown",
            pair_address=best.get("pairAddress"),
        )
        self.market_cache.set(token, summary)
        return summary

    def _fallback_market(self, token: str) -> MarketSummary:
        markets = self.config.markets
        return MarketSummary(
            coin=token,
            perp_symbol=f"{token}-USD",
            spot_symbol=f"{token}/USDC",
            price=markets.fallback_prices.get(token, 0.0),
            volume_24h=markets.fallback_volume_24h,
            price_change_24h=0.0,
            market_cap=0.0,
            liquidity=0.0,
            source_id="fallback",
            pair_address=None,
        )

    def _native_market(self) -> MarketSummary:
        markets = self.config.markets
        coin = markets.native_coin
        return MarketSummary(
            coin=coin,
            perp_symbol=f"{coin}-USD",
            spot_symbol=f"{coin}/USDC",
            price=markets.native_price,
            volume_24h=markets.native_volume_24h,
            price_change_24h=0.0,
            market_cap=0.0,
            liquidity=0.0,
            source_id="hyperliquid",
            pair_address=None,
        )

    # ------------------------------------------------------------------
    # Spot markets
    # ------------------------------------------------------------------

    async def get_spot_markets(self) -> Tuple[List[str], str]:
        """Canonical spot pair names; fails open to an empty list"""
        try:
            meta = await self.exchange.spot_meta()
        except Exception as e:
            LOG.error("Error fetching spot markets: %s", e)
            return [], "error-fallback"

        universe = meta.get("universe")
        if not universe:
            return [], "fallback"

        names = [
            pair["name"] for pair in universe
            if pair.get("isCanonical") and isinstance(pair.get("name"), str)
            and not pair["name"].startswith("@")
        ]
        return names, SOURCE_SPOT_META

    # ------------------------------------------------------------------
    # Aggregator passthrough
    # ------------------------------------------------------------------

    async def search_pairs(self, query: str) -> Tuple[List[PairSummary], str]:
        LOG.info("DEX Screener search: %s", query)
        pairs = await self.aggregator.search(query)
        return self._normalize_pairs(pairs)

    async def get_token_pairs(self, chain_id: str, token_address: str) -> Tuple[List[PairSummary], str]:
        LOG.info("DEX Screener token pairs: %s/%s", chain_id, token_address)
        pairs = await self.aggregator.token_pairs(chain_id, token_address)
        return self._normalize_pairs(pairs)

    @staticmethod
    def _normalize_pairs(pairs: List[Dict]) -> Tuple[List[PairSummary], str]:
        if not pairs:
            return [], SOURCE_AGGREGATOR_EMPTY
        return [PairSummary.from_aggregator(p) for p in pairs if isinstance(p, dict)], SOURCE_AGGREGATOR

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def get_positions(self, request_type: str, user: str) -> Any:
        LOG.info("Fetching positions for user %s", user)
        data = await self.exchange.post_info({"type": request_type, "user": user})
        if not data:
            raise UpstreamError("No positions data available")
        return data

    # ------------------------------------------------------------------
    # Unified info dispatch
    # ------------------------------------------------------------------

    async def get_info(self, request: InfoRequest) -> Tuple[Any, str]:
        """Serve a validated info request; returns (data, source)"""
        if request.kind is InfoRequestKind.CANDLES:
            return await self._candles(request), SOURCE_SYNTHETIC
        if request.kind is InfoRequestKind.ORDER_BOOK:
            return await self._order_book(request), SOURCE_EXCHANGE
        raise InvalidRequestError(f"Unsupported request type: {request.type}")

    async def _candles(self, request: InfoRequest) -> List[Dict[str, float]]:
        limit = request.limit if request.limit is not None else self.config.synthesizer.default_limit
        if limit <= 0:
            raise InvalidRequestError(f"limit must be > 0, got {limit}")

        try:
            mids = await self.exchange.all_mids()
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch real market data: {e.message}")

        anchor = 0.0
        for key in (request.symbol, request.coin, request.pair):
            if key and key in mids:
                anchor = to_float(mids[key])
                break

        if anchor <= 0:
            raise UpstreamError(f"No reference price available for {request.symbol}")

        LOG.info("Using real market price for %s: %s", request.symbol, anchor)
        candles = self.synthesizer.synthesize(anchor, request.interval, limit)
        return [c.to_dict() for c in candles]

    async def _order_book(self, request: InfoRequest) -> Any:
        symbol = request.pair if request.is_spot else request.coin
        if not symbol:
            raise InvalidRequestError("Invalid symbol for order book")

        payload = dict(request.req)
        payload["type"] = request.type
        try:
            data = await self.exchange.post_info(payload)
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch real order book data: {e.message}")

        if not data:
            raise UpstreamError("No order book data available from exchange")

        if isinstance(data, dict):
            try:
                book = OrderBookSnapshot.from_upstream(symbol, data)
            except (KeyError, IndexError, TypeError, ValueError) as e:
                LOG.warning("Order book for %s has an unexpected shape: %s", symbol, e)
            else:
                LOG.info(
                    "Got order book for %s: %d bids / %d asks (best %s / %s)",
                    book.symbol, len(book.bids), len(book.asks), book.best_bid, book.best_ask,
                )
        return data
