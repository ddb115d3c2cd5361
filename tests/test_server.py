"""Tests for websocket message dispatch and HTTP routes."""

import json

import pytest

from papermarket.config import Settings
from papermarket.distribution.server import MarketServer
from papermarket.simulation.market import MarketSimulator
from papermarket.trading import AccountStore


@pytest.fixture
def settings():
    return Settings(db_path=":memory:", seed=1)


@pytest.fixture
def server(settings, states, rng):
    store = AccountStore(":memory:")
    srv = MarketServer(settings, MarketSimulator(states, rng=rng), store)
    yield srv
    store.close()


def send(server, subscriber, **frame):
    server.handle_message(subscriber, json.dumps(frame))
    return subscriber.drain()


class TestMessageDispatch:
    """Tests for websocket frames."""

    def test_subscribe(self, server):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="subscribe", symbol="tcs.ns")

        assert reply["event"] == "snapshot"
        assert reply["data"]["symbol"] == "TCS.NS"

    def test_invalid_symbol(self, server):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="subscribe", symbol="<script>")

        assert reply["event"] == "error"
        assert "Invalid symbol" in reply["data"]["message"]

    def test_unknown_symbol(self, server):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="subscribe", symbol="NOPE.NS")

        assert reply["event"] == "error"

    def test_get_chart(self, server):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="getChart", symbol="TCS.NS", range="1d")

        assert reply["event"] == "chartData"
        assert reply["data"]["range"] == "1d"
        assert len(reply["data"]["data"]) == 78

    def test_search(self, server):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="search", query="infy<>")

        assert reply["event"] == "searchResults"
        assert reply["data"]["query"] == "infy"
        assert [r["symbol"] for r in reply["data"]["results"]] == ["INFY.NS"]

    def test_all_quotes(self, server, states):
        sub = server.hub.connect()

        [reply] = send(server, sub, event="getAllQuotes")

        assert reply["event"] == "allQuotes"
        assert len(reply["data"]) == len(states)

    def test_trading_frame_uses_connection_user(self, server):
        sub = server.hub.connect(user_id="alice")

        [reply] = send(
            server, sub, event="trading", id=7, method="POST", path="/order",
            body={"symbol": "TCS.NS", "side": "BUY", "quantity": 1, "price": 100},
        )

        assert reply["event"] == "tradingResponse"
        assert reply["data"]["id"] == 7
        assert reply["data"]["status"] == 200
        assert server.store.open_positions("alice")[0].quantity == 1

    def test_bad_frames_get_error_events(self, server):
        sub = server.hub.connect()

        server.handle_message(sub, "{not json")
        server.handle_message(sub, "[1, 2]")
        server.handle_message(sub, json.dumps({"event": "explode"}))

        assert [m["event"] for m in sub.drain()] == ["error", "error", "error"]


class TestHttpRoutes:
    def test_health(self, server):
        status, body = server.http_get("/api/health")

        assert status == 200
        assert body["status"] == "ok"
        assert body["stocks"] == 3
        assert body["triggerMode"] == "pull"

    def test_stocks(self, server):
        status, body = server.http_get("/api/stocks")

        assert status == 200
        assert {q["symbol"] for q in body} == {"RELIANCE.NS", "TCS.NS", "INFY.NS"}

    def test_quote(self, server):
        status, body = server.http_get("/api/quote/tcs.ns")

        assert status == 200
        assert body["symbol"] == "TCS.NS"
        assert body["price"] > 0

    def test_quote_errors(self, server):
        assert server.http_get("/api/quote/NOPE.NS")[0] == 404
        assert server.http_get("/api/quote/%3Cscript%3E")[0] == 400

    def test_chart_with_range(self, server):
        status, body = server.http_get("/api/chart/INFY.NS", {"range": "5m"})

        assert status == 200
        assert body["range"] == "5m"

    def test_chart_unknown_symbol(self, server):
        assert server.http_get("/api/chart/NOPE.NS")[0] == 404

    def test_search(self, server):
        status, body = server.http_get("/api/search/tata%20consultancy")

        assert status == 200
        assert [r["symbol"] for r in body] == ["TCS.NS"]

    def test_trading_account_for_user(self, server):
        status, body = server.http_get("/api/trading/account", {"user": "bob"})

        assert status == 200
        assert body["userId"] == "bob"

    def test_non_api_paths_upgrade(self, server):
        assert server.http_get("/") is None
        assert server.http_get("/ws") is None

    def test_unknown_api_path(self, server):
        assert server.http_get("/api/nope")[0] == 404


class TestPushMode:
    def test_push_mode_attaches_triggers(self, states, rng):
        settings = Settings(db_path=":memory:", trigger_mode="push")
        store = AccountStore(":memory:")
        server = MarketServer(settings, MarketSimulator(states, rng=rng), store)

        assert len(server.simulator.engine._listeners) == 2
        store.close()
