#!/usr/bin/env python3
"""
Headless paper trading session.

Drives the tick engine offline, places random orders with stop-loss and
target levels, evaluates triggers after every tick and prints an account
report at the end.

Usage:
    python scripts/simulate_session.py                     # 300 ticks, seed 7
    python scripts/simulate_session.py --ticks 1000 --orders 40 --seed 1
    python scripts/simulate_session.py --symbols RELIANCE.NS TCS.NS --show-orders
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from papermarket.core.errors import PaperMarketError
from papermarket.core.types import OrderRequest, OrderSide, OrderType, ProductType
from papermarket.core.universe import load_universe
from papermarket.metrics import MetricsCalculator, Reporter
from papermarket.simulation.tick_engine import TickEngine
from papermarket.trading import AccountStore, PositionManager, TriggerEvaluator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

USER = "sim"


def random_request(rng: np.random.Generator, symbol: str, price: float) -> OrderRequest:
    """A random MARKET or LIMIT order with a 2% stop and 3% target."""
    side = OrderSide.BUY if rng.random() < 0.6 else OrderSide.SELL
    order_type = OrderType.LIMIT if rng.random() < 0.3 else OrderType.MARKET
    product = ProductType.MIS if rng.random() < 0.5 else ProductType.CNC
    limit_price = None
    if order_type is OrderType.LIMIT:
        offset = 0.998 if side is OrderSide.BUY else 1.002
        limit_price = round(price * offset, 2)

    exec_price = limit_price or price
    if side is OrderSide.BUY:
        stop_loss, target = exec_price * 0.98, exec_price * 1.03
    else:
        stop_loss, target = exec_price * 1.02, exec_price * 0.97

    return OrderRequest(
        symbol=symbol,
        side=side,
        quantity=int(1 + rng.random() * 50),
        price=price,
        order_type=order_type,
        product=product,
        limit_price=limit_price,
        stop_loss=round(stop_loss, 2),
        target=round(target, 2),
    )


def main():
    parser = argparse.ArgumentParser(
        description="Run an offline paper trading session"
    )
    parser.add_argument("--ticks", type=int, default=300, help="Tick batches to simulate")
    parser.add_argument("--orders", type=int, default=20, help="Random orders to place")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    parser.add_argument("--symbols", type=str, nargs="+", help="Symbols to trade (default: all stocks)")
    parser.add_argument("--db", type=str, default=":memory:", help="SQLite path")
    parser.add_argument("--show-orders", action="store_true", help="Print order history")
    parser.add_argument("--show-positions", action="store_true", help="Print positions")

    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    states = load_universe(rng=rng, include_indices=False)
    symbols = args.symbols or list(states)
    unknown = [s for s in symbols if s not in states]
    if unknown:
        logger.error(f"Unknown symbols: {unknown}")
        sys.exit(1)

    engine = TickEngine(states, rng=rng)
    store = AccountStore(args.db)
    positions = PositionManager(store)
    triggers = TriggerEvaluator(store, positions)
    ledger = store.ledger(USER)

    order_ticks = set(rng.choice(args.ticks, size=min(args.orders, args.ticks), replace=False).tolist())
    start_ms = 1_700_000_000_000
    rejected = 0
    fired = 0

    logger.info(f"Simulating {args.ticks} ticks over {len(symbols)} symbols, {len(order_ticks)} orders")

    for i in range(args.ticks):
        engine.tick(start_ms + i * 1000)
        prices = engine.price_snapshot()

        if i in order_ticks:
            symbol = symbols[int(rng.random() * len(symbols))]
            try:
                positions.place_order(ledger, random_request(rng, symbol, prices[symbol]))
            except PaperMarketError as e:
                rejected += 1
                logger.warning(f"Order rejected: {e}")

        if triggers.evaluate(ledger, prices):
            fired += 1

    logger.info(f"Session done: {fired} trigger evaluations fired, {rejected} orders rejected")

    calculator = MetricsCalculator(store.default_balance)
    summary = calculator.account_summary(
        ledger.snapshot(),
        store.open_positions(USER),
        store.closed_positions(USER, limit=None),
        engine.price_snapshot(),
    )

    reporter = Reporter()
    reporter.print_account_summary(USER, summary)
    if args.show_positions:
        reporter.print_positions(store.open_positions(USER) + store.closed_positions(USER))
    if args.show_orders:
        reporter.print_orders(store.all_orders(USER))


if __name__ == "__main__":
    main()
