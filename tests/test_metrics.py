"""Tests for account metrics."""

import pandas as pd
import pytest

from papermarket.core.types import (
    Account, OrderRequest, OrderSide, Position, PositionStatus, ProductType
)
from papermarket.metrics import MetricsCalculator, Reporter


def closed(pid, avg, exit_price, qty=10, side=OrderSide.BUY, closed_at=None):
    pos = Position(
        id=pid, account_id="u", symbol="TCS.NS", side=side, quantity=qty,
        avg_price=avg, product=ProductType.CNC, status=PositionStatus.CLOSED,
        opened_at=0, closed_at=closed_at or pid * 1000, exit_price=exit_price,
    )
    pos.realised_pnl = pos.pnl_at(exit_price)
    return pos


@pytest.fixture
def calculator():
    return MetricsCalculator(initial_balance=1_000_000.0)


class TestMetricsCalculator:
    """Tests for summary statistics."""

    def test_empty_account(self, calculator):
        account = Account("u", 1_000_000.0, 0.0, 0.0, 1)

        summary = calculator.account_summary(account, [], [])

        assert summary["equity"] == 1_000_000.0
        assert summary["closedTrades"] == 0
        assert summary["winRate"] == 0.0
        assert summary["maxDrawdownPct"] == 0.0

    def test_unrealised_and_equity(self, calculator):
        account = Account("u", 999_000.0, 1_000.0, 0.0, 2)
        long_pos = Position(1, "u", "TCS.NS", OrderSide.BUY, 10, 100.0, ProductType.CNC)
        short_pos = Position(2, "u", "INFY.NS", OrderSide.SELL, 5, 200.0, ProductType.MIS)

        summary = calculator.account_summary(
            account, [long_pos, short_pos], [], {"TCS.NS": 105.0}
        )

        # INFY has no live price and is valued at cost
        assert summary["unrealisedPnL"] == 50.0
        assert summary["investedValue"] == 2_000.0
        assert summary["equity"] == 1_000_050.0
        assert summary["openPositions"] == 2

    def test_trade_statistics(self, calculator):
        trades = [
            closed(1, 100.0, 110.0),                      # +100
            closed(2, 100.0, 95.0),                       # -50
            closed(3, 100.0, 90.0, side=OrderSide.SELL),  # +100
        ]

        metrics = calculator.trade_metrics(calculator.trades_frame(trades))

        assert metrics["closedTrades"] == 3
        assert metrics["winRate"] == pytest.approx(66.67)
        assert metrics["profitFactor"] == 4.0
        assert metrics["avgWin"] == 100.0
        assert metrics["avgLoss"] == -50.0
        assert metrics["maxDrawdownPct"] == pytest.approx(50 / 1_000_100 * 100, abs=0.01)

    def test_profit_factor_without_losses(self, calculator):
        metrics = calculator.trade_metrics(calculator.trades_frame([closed(1, 100.0, 110.0)]))

        assert metrics["profitFactor"] is None

    def test_trades_frame_sorted_by_close_time(self, calculator):
        df = calculator.trades_frame([closed(2, 100.0, 90.0, closed_at=5000), closed(1, 100.0, 110.0, closed_at=1000)])

        assert list(df["pnl"]) == [100.0, -100.0]
        assert isinstance(df.index, pd.DatetimeIndex)

    def test_trade_pnl_includes_partial_netting(self, store, manager, ledger, calculator):
        def order(side, quantity, price):
            return OrderRequest.from_payload(
                {"symbol": "TCS.NS", "side": side, "quantity": quantity, "price": price}
            )

        manager.place_order(ledger, order("BUY", 10, 100.0))
        manager.place_order(ledger, order("SELL", 4, 110.0))   # +40
        manager.place_order(ledger, order("SELL", 6, 90.0))    # -60

        summary = calculator.account_summary(
            ledger.snapshot(), store.open_positions("alice"), store.closed_positions("alice", limit=None)
        )

        assert summary["realisedPnL"] == -20.0
        assert summary["closedTrades"] == 1
        assert summary["avgLoss"] == -20.0
        assert store.closed_positions("alice")[0].realised_pnl == pytest.approx(-20.0)

    def test_partial_netting_then_close(self, store, manager, ledger, calculator):
        placed = manager.place_order(ledger, OrderRequest.from_payload(
            {"symbol": "TCS.NS", "side": "BUY", "quantity": 10, "price": 100.0}
        ))
        manager.place_order(ledger, OrderRequest.from_payload(
            {"symbol": "TCS.NS", "side": "SELL", "quantity": 5, "price": 120.0}
        ))
        assert store.get_position("alice", placed.id).realised_pnl == pytest.approx(100.0)

        manager.close_position(ledger, placed.id, 110.0)

        trades = calculator.trades_frame(store.closed_positions("alice", limit=None))
        assert list(trades["pnl"]) == [pytest.approx(150.0)]
        assert ledger.snapshot().realised_pnl == pytest.approx(150.0)

    def test_max_drawdown(self, calculator):
        curve = pd.Series([100.0, 120.0, 90.0, 130.0])

        assert calculator.calculate_max_drawdown(curve) == pytest.approx(25.0)


class TestReporter:
    def test_print_account_summary(self, calculator, capsys):
        account = Account("u", 1_000_000.0, 0.0, 0.0, 1)
        summary = calculator.account_summary(account, [], [closed(1, 100.0, 110.0)])

        Reporter().print_account_summary("alice", summary)

        out = capsys.readouterr().out
        assert "ACCOUNT SUMMARY: alice" in out
        assert "Profit Factor: n/a" in out

    def test_print_positions_and_orders(self, capsys):
        reporter = Reporter()

        reporter.print_positions([closed(1, 100.0, 110.0)])
        reporter.print_orders([])

        out = capsys.readouterr().out
        assert "TCS.NS" in out
        assert "Showing 0 of 0 orders" in out
