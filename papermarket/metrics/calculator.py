"""
Account performance metrics for paper trading.
Computes equity, unrealised P&L and closed-trade statistics.
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from papermarket.core.types import Account, Position, r2

logger = logging.getLogger(__name__)


class MetricsCalculator:
    """
    Calculates account performance metrics.

    Supports:
    - Unrealised P&L and equity against live prices
    - Win Rate
    - Profit Factor
    - Average Win/Loss
    - Max Drawdown of the realised equity curve
    """

    def __init__(self, initial_balance: float = 1_000_000.0):
        """
        Initialize calculator.

        Args:
            initial_balance: Starting balance the realised equity curve is built from
        """
        self.initial_balance = initial_balance

    def account_summary(
        self,
        account: Account,
        open_positions: List[Position],
        closed_positions: List[Position],
        prices: Optional[Mapping[str, float]] = None,
    ) -> Dict[str, Any]:
        """
        Summarise an account.

        Args:
            account: Ledger snapshot
            open_positions: Positions still open
            closed_positions: Closed positions (any order)
            prices: Live prices; open positions without one are valued at cost

        Returns:
            Dict of camelCase metric name to value
        """
        prices = prices or {}
        unrealised = 0.0
        invested = 0.0
        for pos in open_positions:
            price = prices.get(pos.symbol, pos.avg_price)
            unrealised += pos.pnl_at(price)
            invested += pos.avg_price * pos.quantity

        summary: Dict[str, Any] = {
            "balance": r2(account.balance),
            "usedMargin": r2(account.used_margin),
            "realisedPnL": r2(account.realised_pnl),
            "unrealisedPnL": r2(unrealised),
            "investedValue": r2(invested),
            "equity": r2(account.balance + account.used_margin + unrealised),
            "openPositions": len(open_positions),
        }
        summary.update(self.trade_metrics(self.trades_frame(closed_positions)))
        return summary

    def trades_frame(self, closed_positions: List[Position]) -> pd.DataFrame:
        """
        Closed positions as a DataFrame.

        Returns:
            DataFrame with columns: symbol, side, quantity, entry, exit, pnl
            Index is close time, oldest first
        """
        columns = ["symbol", "side", "quantity", "entry", "exit", "pnl"]
        rows = [
            {
                "closed_at": pd.to_datetime(pos.closed_at, unit="ms"),
                "symbol": pos.symbol,
                "side": pos.side.value,
                "quantity": pos.quantity,
                "entry": pos.avg_price,
                "exit": pos.exit_price,
                "pnl": pos.realised_pnl,
            }
            for pos in closed_positions
            if pos.exit_price is not None and pos.closed_at is not None
        ]
        if not rows:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(rows).set_index("closed_at").sort_index()
        return df[columns]

    def trade_metrics(self, trades: pd.DataFrame) -> Dict[str, Any]:
        """Win/loss statistics over a trades frame (see trades_frame)."""
        metrics: Dict[str, Any] = {"closedTrades": len(trades)}

        if trades.empty:
            metrics.update({
                "winRate": 0.0,
                "profitFactor": 0.0,
                "avgWin": 0.0,
                "avgLoss": 0.0,
                "maxDrawdownPct": 0.0,
            })
            return metrics

        pnl = trades["pnl"].astype(float)
        winners = pnl[pnl > 0]
        losers = pnl[pnl <= 0]

        gross_profit = float(winners.sum())
        gross_loss = abs(float(losers.sum()))

        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            # No losing trade: unbounded, reported as null
            profit_factor = None if gross_profit > 0 else 0.0

        metrics["winRate"] = r2(len(winners) / len(pnl) * 100)
        metrics["profitFactor"] = r2(profit_factor) if profit_factor is not None else None
        metrics["avgWin"] = r2(float(np.mean(winners))) if len(winners) else 0.0
        metrics["avgLoss"] = r2(float(np.mean(losers))) if len(losers) else 0.0

        equity_curve = self.initial_balance + pnl.cumsum()
        equity_curve = pd.concat([pd.Series([self.initial_balance]), equity_curve.reset_index(drop=True)])
        metrics["maxDrawdownPct"] = r2(self.calculate_max_drawdown(equity_curve))
        return metrics

    def calculate_max_drawdown(self, equity_curve: pd.Series) -> float:
        """
        Calculate maximum drawdown percentage.

        Args:
            equity_curve: Series of equity values

        Returns:
            Max drawdown as positive percentage
        """
        if len(equity_curve) < 2:
            return 0.0

        running_max = equity_curve.expanding().max()
        drawdown = (equity_curve - running_max) / running_max * 100
        value = abs(float(drawdown.min()))
        return value if math.isfinite(value) else 0.0
