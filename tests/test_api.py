"""Tests for the trading route table."""

import json

import pytest


def place(api, user="alice", **fields):
    body = {"symbol": "TCS.NS", "side": "BUY", "quantity": 10, "price": 100}
    body.update(fields)
    return api.handle("POST", "/order", body, user_id=user)


class TestTradingAPI:
    """Tests for routing and error-to-status mapping."""

    def test_get_account(self, api):
        status, body = api.handle("GET", "/account", user_id="alice")

        assert status == 200
        assert body["userId"] == "alice"
        assert body["balance"] == 1_000_000.0

    def test_default_user(self, api):
        status, body = api.handle("GET", "/account")

        assert status == 200
        assert body["userId"] == "default"

    def test_reads_do_not_create_accounts(self, api, store):
        for path in ("/account", "/positions", "/orders", "/summary"):
            assert api.handle("GET", path, user_id="ghost")[0] == 200

        _, body = api.handle("GET", "/account", user_id="ghost")
        assert body["balance"] == 1_000_000.0
        assert body["orderIdCounter"] == 1
        assert "ghost" not in store.user_ids()

        api.handle("POST", "/add-money", {"amount": 100}, user_id="ghost")
        assert "ghost" in store.user_ids()

    def test_place_order(self, api):
        status, body = place(api, product="MIS")

        assert status == 200
        assert body["success"] is True
        assert body["order"]["status"] == "EXECUTED"
        assert body["order"]["product"] == "MIS"
        json.dumps(body)

    @pytest.mark.parametrize("fields, message", [
        ({"quantity": -1}, "Quantity must be a positive integer"),
        ({"side": "HOLD"}, "Invalid side"),
        ({"symbol": ""}, "Symbol is required"),
        ({"symbol": "   "}, "Symbol is required"),
        ({"symbol": "<b>TCS</b>"}, "Invalid symbol"),
    ])
    def test_validation_errors_are_400(self, api, fields, message):
        status, body = place(api, **fields)

        assert status == 400
        assert body["success"] is False
        assert message in body["error"]

    def test_insufficient_funds_is_400(self, api):
        status, body = place(api, price=1_000_000)

        assert status == 400
        assert body["error"].startswith("Insufficient balance")

    def test_positions_and_orders(self, api):
        _, placed = place(api)
        api.handle("POST", f"/close/{placed['order']['id']}", {"currentPrice": 105}, user_id="alice")
        place(api, type="LIMIT", limitPrice=90)

        _, positions = api.handle("GET", "/positions", user_id="alice")
        _, orders = api.handle("GET", "/orders", user_id="alice")

        assert positions["open"] == []
        assert positions["closed"][0]["exitPrice"] == 105.0
        assert [o["type"] for o in orders["open"]] == ["LIMIT"]
        assert [o["id"] for o in orders["executed"]] == [2, 1]

    def test_close(self, api):
        _, placed = place(api)

        status, body = api.handle("POST", f"/close/{placed['order']['id']}", {"currentPrice": 110}, user_id="alice")

        assert status == 200
        assert body == {"success": True, "pnl": 100.0}

    def test_close_errors(self, api):
        _, placed = place(api)
        position_id = placed["order"]["id"]

        assert api.handle("POST", "/close/99", {"currentPrice": 110}, user_id="alice")[0] == 404
        assert api.handle("POST", f"/close/{position_id}", {"currentPrice": 0}, user_id="alice")[0] == 400
        assert api.handle("POST", f"/close/{position_id}", {}, user_id="alice")[0] == 400
        api.handle("POST", f"/close/{position_id}", {"currentPrice": 110}, user_id="alice")
        assert api.handle("POST", f"/close/{position_id}", {"currentPrice": 110}, user_id="alice")[0] == 400

    def test_cancel(self, api):
        _, placed = place(api, type="LIMIT", limitPrice=90)

        assert api.handle("POST", f"/cancel/{placed['order']['id']}", user_id="alice") == (200, {"success": True})
        assert api.handle("POST", "/cancel/77", user_id="alice")[0] == 404

    def test_check_triggers(self, api):
        place(api, stopLoss=95)

        assert api.handle("POST", "/check-triggers", {}, user_id="alice") == (200, {"triggered": False})
        status, body = api.handle(
            "POST", "/check-triggers", {"livePrices": {"TCS.NS": {"price": 90}}}, user_id="alice"
        )
        assert (status, body) == (200, {"triggered": True})

    def test_check_triggers_ignores_infinite_prices(self, api):
        place(api, side="SELL", product="MIS", stopLoss=105)
        body = json.loads('{"livePrices": {"TCS.NS": Infinity}}')

        assert api.handle("POST", "/check-triggers", body, user_id="alice") == (200, {"triggered": False})

        _, account = api.handle("GET", "/account", user_id="alice")
        _, positions = api.handle("GET", "/positions", user_id="alice")
        assert account["realisedPnL"] == 0.0
        assert len(positions["open"]) == 1

    def test_reset(self, api):
        place(api)

        assert api.handle("POST", "/reset", user_id="alice") == (200, {"success": True})
        assert api.handle("GET", "/account", user_id="alice")[1]["balance"] == 1_000_000.0

    def test_add_money(self, api):
        status, body = api.handle("POST", "/add-money", {"amount": 5000}, user_id="alice")
        assert (status, body) == (200, {"success": True, "newBalance": 1_005_000.0})

        status, body = api.handle("POST", "/add-money", {"amount": 0}, user_id="alice")
        assert status == 400
        assert body["success"] is False

    def test_summary(self, api):
        _, placed = place(api)
        place(api, symbol="INFY.NS", quantity=2, price=1000)
        api.handle("POST", f"/close/{placed['order']['id']}", {"currentPrice": 120}, user_id="alice")

        status, body = api.handle("GET", "/summary", {"livePrices": {"INFY.NS": 1100}}, user_id="alice")

        assert status == 200
        assert body["realisedPnL"] == 200.0
        assert body["unrealisedPnL"] == 200.0
        assert body["closedTrades"] == 1
        assert body["winRate"] == 100.0
        json.dumps(body)

    def test_unknown_route_and_method(self, api):
        assert api.handle("GET", "/nope")[0] == 404
        assert api.handle("GET", "/order")[0] == 405
        assert api.handle("DELETE", "/reset")[0] == 405

    def test_non_object_body(self, api):
        assert api.handle("POST", "/order", ["x"])[0] == 400

    def test_users_are_isolated(self, api):
        place(api, user="alice")

        _, bob = api.handle("GET", "/positions", user_id="bob")

        assert bob["open"] == []
