import pytest
from fastapi.testclient import TestClient

from hyperdash.api import create_app
from hyperdash.proxy.errors import UpstreamError
from hyperdash.proxy.rate_limiter import RateLimiter
from hyperdash.proxy.service import MarketDataService
from hyperdash.stream.gateway import ConnectionGateway

from conftest import FakeAggregator, FakeExchange, make_pair


def build_client(config, exchange=None, aggregator=None, connector=None):
    service = MarketDataService(
        config,
        exchange=exchange or FakeExchange(),
        aggregator=aggregator or FakeAggregator(),
    )
    app = create_app(
        config,
        market_service=service,
        gateway=ConnectionGateway(config.upstream, connector=connector),
        rate_limiter=RateLimiter(config.rate_limit),
    )
    return TestClient(app)


@pytest.fixture
def client(config):
    return build_client(config)


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["status"] == "healthy"
        assert body["sessions"] == 0
        assert body["relays"] == 0
        assert isinstance(body["timestamp"], int)

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["active_sessions"] == 0
        assert body["subscribed_symbols"] == []


class TestMarketsRoutes:

    def test_markets_envelope(self, client, config):
        resp = client.get("/api/markets")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["source"] == "dexscreener_api"
        assert "error" not in body
        assert body["data"][0]["coin"] == "HYPE"
        assert len(body["data"]) == len(config.markets.tokens) + 1

    def test_spot_markets_fail_open(self, config):
        client = build_client(config, exchange=FakeExchange(fail=True))
        body = client.get("/api/spot/markets").json()
        assert body["ok"] is True
        assert body["data"] == []
        assert body["source"] == "error-fallback"

    def test_dexscreener_search(self, config):
        client = build_client(config, aggregator=FakeAggregator(results={"PEPE": [make_pair()]}))
        body = client.get("/api/dexscreener/search/PEPE").json()
        assert body["ok"] is True
        assert body["source"] == "dexscreener-api"
        assert body["data"][0]["dexId"] == "uniswap"

    def test_dexscreener_search_failure(self, config):
        aggregator = FakeAggregator(results={"PEPE": UpstreamError("aggregator returned HTTP 503: busy")})
        client = build_client(config, aggregator=aggregator)

        resp = client.get("/api/dexscreener/search/PEPE")

        assert resp.status_code == 502
        assert resp.json() == {
            "ok": False,
            "error": "Failed to fetch DEX Screener data",
            "timestamp": resp.json()["timestamp"],
        }

    def test_dexscreener_token_pairs(self, config):
        aggregator = FakeAggregator(token_results=[make_pair("raydium")])
        client = build_client(config, aggregator=aggregator)

        body = client.get("/api/dexscreener/token/solana/So111").json()

        assert body["data"][0]["dexId"] == "raydium"
        assert aggregator.queries == ["solana/So111"]


class TestPositionsRoute:

    def test_defaults_when_body_missing(self, config):
        exchange = FakeExchange(info_response={"marginSummary": {}})
        client = build_client(config, exchange=exchange)

        body = client.post("/api/hyperliquid/positions").json()

        assert body["ok"] is True
        assert body["source"] == "hyperliquid-real"
        assert exchange.calls[-1] == {
            "type": "clearinghouseState",
            "user": "0x0000000000000000000000000000000000000000",
        }

    def test_upstream_failure(self, config):
        client = build_client(config, exchange=FakeExchange(fail=True))
        resp = client.post("/api/hyperliquid/positions", json={"user": "0xabc"})
        assert resp.status_code == 502
        assert resp.json()["error"].startswith("Failed to fetch real positions data")


class TestInfoRoute:

    def test_candles(self, client):
        resp = client.post("/api/info", json={"type": "candleSnapshot", "req": {"coin": "BTC", "limit": 10}})
        body = resp.json()
        assert resp.status_code == 200
        assert body["ok"] is True
        assert len(body["data"]) == 10
        assert body["data"][-1]["close"] == 65000.5

    def test_candles_without_reference_price(self, config):
        client = build_client(config, exchange=FakeExchange(fail=True))
        resp = client.post("/api/info", json={"type": "candleSnapshot", "req": {"coin": "BTC"}})
        body = resp.json()
        assert resp.status_code == 502
        assert body["ok"] is False
        assert "data" not in body

    def test_invalid_symbol(self, client):
        resp = client.post("/api/info", json={"type": "l2Book", "req": {"coin": "undefined"}})
        assert resp.status_code == 400
        assert resp.json()["error"] == "No valid symbol provided"

    def test_unsupported_type(self, client):
        resp = client.post("/api/info", json={"type": "meta", "req": {"coin": "BTC"}})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unsupported request type: meta"

    def test_malformed_json(self, client):
        resp = client.post("/api/info", content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["ok"] is False

    def test_rate_limit(self, client, config):
        payload = {"type": "l2Book", "req": {"coin": "undefined"}}
        statuses = [client.post("/api/info", json=payload).status_code
                    for _ in range(config.rate_limit.max_requests + 1)]

        assert statuses[:-1] == [400] * config.rate_limit.max_requests
        assert statuses[-1] == 429

        resp = client.post("/api/info", json=payload)
        assert resp.status_code == 429
        assert resp.json()["error"].startswith("Rate limit exceeded")
        assert int(resp.headers["Retry-After"]) >= 1

    def test_other_routes_not_rate_limited(self, client, config):
        for _ in range(config.rate_limit.max_requests + 2):
            assert client.get("/api/spot/markets").status_code == 200


class TestNonFiniteUpstreamNumbers:

    def test_nan_pair_does_not_fail_markets(self, config):
        aggregator = FakeAggregator(results={
            "ETH": [make_pair(price="NaN")],
            "BTC": [make_pair("curve", "65000.0", 10.0)],
        })
        client = build_client(config, aggregator=aggregator)

        resp = client.get("/api/markets")

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        rows = {row["coin"]: row for row in body["data"]}
        assert len(rows) == len(config.markets.tokens) + 1
        assert rows["ETH"]["price"] == 0.0
        assert rows["BTC"]["price"] == 65000.0

    def test_infinite_liquidity_in_search(self, config):
        aggregator = FakeAggregator(results={"eth": [make_pair(liquidity={"usd": "Infinity"})]})
        client = build_client(config, aggregator=aggregator)

        resp = client.get("/api/dexscreener/search/eth")

        assert resp.status_code == 200
        assert resp.json()["data"][0]["liquidity"] == 0.0
