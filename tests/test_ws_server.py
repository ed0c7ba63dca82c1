from fastapi.testclient import TestClient

from hyperdash.api import create_app
from hyperdash.proxy.rate_limiter import RateLimiter
from hyperdash.proxy.service import MarketDataService
from hyperdash.stream.gateway import ConnectionGateway

from conftest import FakeAggregator, FakeConnector, FakeExchange


BOOK_UPDATE = {"channel": "l2Book", "data": {"coin": "BTC", "time": 1, "levels": [[], []]}}


def build_client(config, connector):
    gateway = ConnectionGateway(config.upstream, connector=connector)
    app = create_app(
        config,
        market_service=MarketDataService(config, exchange=FakeExchange(), aggregator=FakeAggregator()),
        gateway=gateway,
        rate_limiter=RateLimiter(config.rate_limit),
    )
    return TestClient(app), gateway


class TestWebSocketEndpoint:

    def test_ping_pong(self, config):
        client, _ = build_client(config, FakeConnector())
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"channel": "pong"}

    def test_junk_then_ping(self, config):
        connector = FakeConnector()
        client, _ = build_client(config, connector)
        with client.websocket_connect("/ws") as ws:
            ws.send_text("hello")
            ws.send_json({"method": "subscribe", "subscription": {"type": "candle", "coin": "BTC"}})
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"channel": "pong"}
        assert connector.upstreams == []

    def test_subscribe_forwards_upstream_frames(self, config):
        connector = FakeConnector(script=[BOOK_UPDATE])
        client, gateway = build_client(config, connector)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"method": "subscribe", "subscription": {"type": "l2Book", "coin": "BTC"}})
            frame = ws.receive_json()

            assert frame["channel"] == "l2Book"
            assert frame["source"] == "hyperliquid-real"
            assert frame["data"] == BOOK_UPDATE
            assert isinstance(frame["timestamp"], int)
            assert gateway.registry.relay_count == 1

            ws.send_json({"method": "unsubscribe"})
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"channel": "pong"}

            upstream = connector.upstreams[0]
            assert upstream.closed
            assert [f["method"] for f in upstream.sent_frames()] == ["subscribe", "unsubscribe"]
            assert gateway.registry.relay_count == 0

    def test_resubscribe_keeps_single_relay(self, config):
        connector = FakeConnector(script=[BOOK_UPDATE])
        client, gateway = build_client(config, connector)

        with client.websocket_connect("/ws") as ws:
            for coin in ("BTC", "ETH", "SOL"):
                ws.send_json({"method": "subscribe", "subscription": {"type": "l2Book", "coin": coin}})
                ws.receive_json()
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"channel": "pong"}

            assert len(connector.upstreams) == 3
            assert connector.max_live == 1
            assert gateway.registry.relay_count == 1
            assert gateway.get_status()["subscribed_symbols"] == ["SOL"]

    def test_failed_upstream_reports_status(self, config):
        client, gateway = build_client(config, FakeConnector(fail=True))
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"method": "subscribe", "subscription": {"type": "spotL2Book", "pair": "PURR/USDC"}})
            frame = ws.receive_json()
            assert frame["channel"] == "status"
            assert frame["data"]["connected"] is False
            assert gateway.registry.relay_count == 0

    def test_unsubscribe_then_close_sends_single_unsubscribe(self, config):
        connector = FakeConnector(script=[BOOK_UPDATE])
        client, gateway = build_client(config, connector)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"method": "subscribe", "subscription": {"type": "l2Book", "coin": "ETH"}})
            ws.receive_json()
            ws.send_json({"method": "unsubscribe", "subscription": {"type": "l2Book", "coin": "ETH"}})
            ws.send_json({"method": "ping"})
            assert ws.receive_json() == {"channel": "pong"}

        upstream = connector.upstreams[0]
        assert [f["method"] for f in upstream.sent_frames()] == ["subscribe", "unsubscribe"]
        assert upstream.close_count == 1
        assert len(connector.upstreams) == 1
        assert gateway.registry.relay_count == 0
