"""Tests for core types."""

import math
from datetime import datetime

import pytest

from papermarket.core.errors import ValidationError
from papermarket.core.sanitize import sanitize_query, sanitize_symbol
from papermarket.core.types import (
    Candle, OrderBook, BookLevel, OrderRequest, OrderSide, OrderType, Position, ProductType
)
from conftest import make_state


class TestCandle:
    """Tests for Candle dataclass."""

    def test_to_dict_uses_iso_date(self):
        candle = Candle(datetime(2024, 1, 2, 9, 15), 100.0, 101.0, 99.0, 100.5, 500)

        data = candle.to_dict()

        assert data["date"] == "2024-01-02T09:15:00"
        assert set(data) == {"date", "open", "high", "low", "close", "volume"}


class TestSymbolState:
    """Tests for live symbol state."""

    def test_change_and_percent(self):
        state = make_state(price=110.0, previous_close=100.0)

        assert state.change == 10.0
        assert state.change_percent == 10.0

    def test_zero_previous_close(self):
        state = make_state(price=110.0, previous_close=0.0)

        assert state.change_percent == 0.0

    def test_quote_fields(self):
        quote = make_state("ABC.NS", 250.0).to_quote()

        assert quote["symbol"] == "ABC.NS"
        assert quote["price"] == 250.0
        assert quote["marketState"] == "REGULAR"
        assert quote["currency"] == "INR"
        assert "changePercent" in quote


class TestOrderBook:
    def test_spread(self):
        book = OrderBook(
            symbol="X",
            bids=[BookLevel(99.95, 100, 3)],
            asks=[BookLevel(100.05, 200, 4)],
        )

        assert book.spread == 0.1
        assert book.to_dict()["spread"] == 0.1

    def test_empty_book_spread(self):
        assert OrderBook(symbol="X", bids=[], asks=[]).spread == 0.0


class TestPosition:
    """Tests for directional P&L."""

    def test_long_pnl(self):
        pos = Position(1, "u", "X", OrderSide.BUY, 10, 100.0, ProductType.CNC)

        assert pos.pnl_at(110.0) == 100.0
        assert pos.pnl_at(94.0) == -60.0
        assert pos.pnl_at(110.0, quantity=4) == 40.0

    def test_short_pnl(self):
        pos = Position(1, "u", "X", OrderSide.SELL, 10, 100.0, ProductType.MIS)

        assert pos.pnl_at(90.0) == 100.0
        assert pos.pnl_at(105.0) == -50.0


class TestOrderRequest:
    """Tests for boundary validation of order payloads."""

    def test_minimal_payload(self):
        req = OrderRequest.from_payload({"symbol": "reliance.ns", "side": "buy", "quantity": 10, "price": 100})

        assert req.symbol == "RELIANCE.NS"
        assert req.side is OrderSide.BUY
        assert req.order_type is OrderType.MARKET
        assert req.product is ProductType.CNC
        assert req.exec_price == 100.0

    def test_limit_exec_price(self):
        req = OrderRequest.from_payload({
            "symbol": "X", "side": "SELL", "quantity": 5, "price": 100,
            "type": "LIMIT", "limitPrice": 105,
        })

        assert req.exec_price == 105.0

    def test_limit_without_limit_price_uses_price(self):
        req = OrderRequest.from_payload({"symbol": "X", "side": "BUY", "quantity": 5, "price": 100, "type": "LIMIT"})

        assert req.exec_price == 100.0

    def test_integral_float_quantity_accepted(self):
        req = OrderRequest.from_payload({"symbol": "X", "side": "BUY", "quantity": 3.0, "price": 100})

        assert req.quantity == 3
        assert isinstance(req.quantity, int)

    @pytest.mark.parametrize("payload, message", [
        ({"side": "BUY", "quantity": 1, "price": 100}, "Symbol is required"),
        ({"symbol": "   ", "side": "BUY", "quantity": 1, "price": 100}, "Symbol is required"),
        ({"symbol": "TCS; DROP", "side": "BUY", "quantity": 1, "price": 100}, "Invalid symbol"),
        ({"symbol": "X", "side": "HOLD", "quantity": 1, "price": 100}, "Invalid side"),
        ({"symbol": "X", "side": "BUY", "quantity": 0, "price": 100}, "Quantity must be a positive integer"),
        ({"symbol": "X", "side": "BUY", "quantity": 1.5, "price": 100}, "Quantity must be a positive integer"),
        ({"symbol": "X", "side": "BUY", "quantity": True, "price": 100}, "Quantity must be a positive integer"),
        ({"symbol": "X", "side": "BUY", "quantity": 1, "price": -5}, "Invalid price"),
        ({"symbol": "X", "side": "BUY", "quantity": 1}, "Invalid price"),
        ({"symbol": "X", "side": "BUY", "quantity": 1, "price": 100, "limitPrice": -1}, "Invalid execution price"),
        ({"symbol": "X", "side": "BUY", "quantity": 1, "price": 100, "product": "FNO"}, "Invalid product"),
    ])
    def test_rejects_invalid_payloads(self, payload, message):
        with pytest.raises(ValidationError, match=message):
            OrderRequest.from_payload(payload)

    def test_rejects_non_finite_price(self):
        with pytest.raises(ValidationError):
            OrderRequest.from_payload({"symbol": "X", "side": "BUY", "quantity": 1, "price": math.inf})


class TestSanitize:
    def test_symbol(self):
        assert sanitize_symbol(" m&m.ns ") == "M&M.NS"
        assert sanitize_symbol("^NSEI") == "^NSEI"
        assert sanitize_symbol("DROP TABLE") is None
        assert sanitize_symbol("X" * 21) is None
        assert sanitize_symbol(None) is None

    def test_query(self):
        assert sanitize_query("tata<script>") == "tatascript"
        assert len(sanitize_query("a" * 100)) == 40
        assert sanitize_query("") is None
