import asyncio
import json

import pytest

from hyperdash.config import GatewayConfig, RateLimitConfig
from hyperdash.proxy.candles import CandleSynthesizer
from hyperdash.proxy.errors import UpstreamError
from hyperdash.proxy.service import MarketDataService


_CLOSED = object()


class FakeExchange:
    """Stands in for ExchangeInfoClient; records every info payload"""

    def __init__(self, mids=None, spot_meta=None, info_response=None, fail=False):
        self.mids = mids if mids is not None else {"BTC": "65000.5", "ETH": "3200.25", "PURR/USDC": "0.21"}
        self.meta = spot_meta if spot_meta is not None else {"universe": []}
        self.info_response = info_response
        self.fail = fail
        self.calls = []
        self.closed = False

    async def post_info(self, payload):
        self.calls.append(payload)
        if self.fail:
            raise UpstreamError("exchange request timed out after 10.0s")
        return self.info_response

    async def all_mids(self):
        self.calls.append({"type": "allMids"})
        if self.fail:
            raise UpstreamError("exchange request timed out after 10.0s")
        return self.mids

    async def spot_meta(self):
        self.calls.append({"type": "spotMeta"})
        if self.fail:
            raise UpstreamError("exchange returned HTTP 500: oops")
        return self.meta

    async def close(self):
        self.closed = True


class FakeAggregator:
    """Stands in for AggregatorClient; `results` maps query -> pairs or exception"""

    def __init__(self, results=None, token_results=None):
        self.results = results or {}
        self.token_results = token_results if token_results is not None else []
        self.queries = []
        self.closed = False

    async def search(self, query):
        self.queries.append(query)
        result = self.results.get(query, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def token_pairs(self, chain_id, token_address):
        self.queries.append(f"{chain_id}/{token_address}")
        if isinstance(self.token_results, Exception):
            raise self.token_results
        return self.token_results

    async def close(self):
        self.closed = True


class FakeUpstream:
    """In-memory exchange feed connection"""

    def __init__(self, ident, events, script=(), fail_send=False):
        self.ident = ident
        self.events = events
        self.sent = []
        self.close_count = 0
        self.fail_send = fail_send
        self._queue = asyncio.Queue()
        for item in script:
            self.feed(item)

    @property
    def closed(self):
        return self.close_count > 0

    def feed(self, message):
        self._queue.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Simulate the exchange closing the connection"""
        self._queue.put_nowait(_CLOSED)

    def sent_frames(self):
        return [json.loads(raw) for raw in self.sent]

    async def send(self, raw):
        if self.fail_send:
            raise OSError("broken pipe")
        self.sent.append(raw)
        self.events.append(("send", self.ident, json.loads(raw)["method"]))

    async def close(self):
        self.close_count += 1
        self.events.append(("close", self.ident))
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector callable handing out FakeUpstreams"""

    def __init__(self, fail=False, script=(), error=None):
        self.fail = fail
        self.error = error
        self.script = list(script)
        self.upstreams = []
        self.events = []
        self.max_live = 0

    @property
    def live(self):
        return sum(1 for u in self.upstreams if not u.closed)

    async def __call__(self, url, open_timeout):
        if self.fail:
            raise OSError("connection refused")
        if self.error is not None:
            raise self.error
        upstream = FakeUpstream(len(self.upstreams) + 1, self.events, script=self.script)
        self.upstreams.append(upstream)
        self.events.append(("open", upstream.ident))
        self.max_live = max(self.max_live, self.live)
        return upstream


async def settle(rounds=10):
    """Let reader tasks drain queued frames"""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_pair(dex_id="uniswap", price="100.5", volume=1000.0, **extra):
    pair = {
        "chainId": "ethereum",
        "dexId": dex_id,
        "pairAddress": f"0x{dex_id}",
        "baseToken": {"symbol": "ETH"},
        "quoteToken": {"symbol": "USDC"},
        "priceUsd": price,
        "priceChange": {"h24": "1.5"},
        "volume": {"h24": volume},
        "liquidity": {"usd": "50000"},
        "fdv": 123456789,
        "marketCap": "120000000",
        "pairCreatedAt": 1700000000000,
        "url": f"https://dexscreener.com/ethereum/0x{dex_id}",
    }
    pair.update(extra)
    return pair


@pytest.fixture
def config():
    return GatewayConfig(rate_limit=RateLimitConfig(window_ms=60_000, max_requests=3))


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def aggregator():
    return FakeAggregator()


@pytest.fixture
def service(config, exchange, aggregator):
    return MarketDataService(
        config,
        exchange=exchange,
        aggregator=aggregator,
        synthesizer=CandleSynthesizer(config.synthesizer, seed=7),
    )


@pytest.fixture
def connector():
    return FakeConnector()
