"""
Console reporting for paper trading accounts.
"""

import logging
from typing import Any, Dict, List

from papermarket.core.types import Order, Position

logger = logging.getLogger(__name__)


class Reporter:
    """
    Formats account state for the console.

    Supports:
    - Account summary
    - Position listing
    - Order history
    """

    def print_account_summary(self, user_id: str, summary: Dict[str, Any]) -> None:
        """
        Print a formatted account summary.

        Args:
            user_id: Account owner
            summary: Output of MetricsCalculator.account_summary
        """
        print("\n" + "=" * 60)
        print(f"ACCOUNT SUMMARY: {user_id}")
        print("=" * 60)

        print("\n--- FUNDS ---")
        print(f"Balance: ₹{summary.get('balance', 0):,.2f}")
        print(f"Used Margin: ₹{summary.get('usedMargin', 0):,.2f}")
        print(f"Invested Value: ₹{summary.get('investedValue', 0):,.2f}")
        print(f"Equity: ₹{summary.get('equity', 0):,.2f}")

        print("\n--- P&L ---")
        print(f"Realised P&L: ₹{summary.get('realisedPnL', 0):,.2f}")
        print(f"Unrealised P&L: ₹{summary.get('unrealisedPnL', 0):,.2f}")

        print("\n--- TRADE STATISTICS ---")
        profit_factor = summary.get("profitFactor")
        print(f"Open Positions: {summary.get('openPositions', 0)}")
        print(f"Closed Trades: {summary.get('closedTrades', 0)}")
        print(f"Win Rate: {summary.get('winRate', 0):.1f}%")
        print(f"Profit Factor: {'n/a' if profit_factor is None else f'{profit_factor:.2f}'}")
        print(f"Avg Win: ₹{summary.get('avgWin', 0):,.2f}")
        print(f"Avg Loss: ₹{summary.get('avgLoss', 0):,.2f}")
        print(f"Max Drawdown: {summary.get('maxDrawdownPct', 0):.2f}%")

        print("\n" + "=" * 60 + "\n")

    def print_positions(self, positions: List[Position]) -> None:
        """
        Print one row per position.

        Args:
            positions: Open or closed positions
        """
        print("\n" + "-" * 80)
        print("POSITIONS")
        print("-" * 80)

        header = (
            f"{'#':>4} {'Symbol':<14} {'Side':<5} {'Qty':>6} {'Avg':>10} "
            f"{'Exit':>10} {'Product':<7} {'Status':<6}"
        )
        print(header)
        print("-" * 80)

        for pos in positions:
            exit_price = f"{pos.exit_price:>10.2f}" if pos.exit_price is not None else f"{'-':>10}"
            print(
                f"{pos.id:>4} {pos.symbol:<14} {pos.side.value:<5} {pos.quantity:>6} "
                f"{pos.avg_price:>10.2f} {exit_price} {pos.product.value:<7} {pos.status.value:<6}"
            )

        print("-" * 80 + "\n")

    def print_orders(self, orders: List[Order], limit: int = 20) -> None:
        """
        Print recent orders.

        Args:
            orders: Orders, most recent first
            limit: Maximum number of orders to show
        """
        print("\n" + "-" * 80)
        print("ORDERS (most recent)")
        print("-" * 80)

        shown = orders[:limit]
        for order in shown:
            note = f"  {order.note}" if order.note else ""
            print(
                f"{order.id:>4} {order.side.value:<5} {order.quantity:>6} {order.symbol:<14} "
                f"@ {order.price:>10.2f} {order.order_type.value:<6} {order.product.value:<4} "
                f"{order.status.value:<9}{note}"
            )

        print("-" * 80)
        print(f"Showing {len(shown)} of {len(orders)} orders\n")
