"""
Stop-loss, target and limit-order triggers.
Evaluated against a live price snapshot, either on demand (pull) or on every tick batch (push).
"""

import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional

from papermarket.core.types import Order, OrderSide, OrderType, Position, Tick
from .ledger import AccountLedger
from .positions import PositionManager
from .store import AccountStore

logger = logging.getLogger(__name__)

STOP_LOSS_NOTE = "Stop Loss triggered"
TARGET_NOTE = "Target reached"


def parse_live_prices(live_prices: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """
    Normalise a live-price snapshot.

    Accepts {symbol: price} or {symbol: {"price": price}}; entries without
    a finite positive price are skipped.
    """
    prices: Dict[str, float] = {}
    if not live_prices:
        return prices

    for symbol, raw in live_prices.items():
        if isinstance(raw, Mapping):
            raw = raw.get("price")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            continue
        try:
            price = float(raw)
        except OverflowError:
            continue
        if math.isfinite(price) and price > 0:
            prices[str(symbol)] = price
    return prices


def position_trigger(pos: Position, price: float) -> Optional[str]:
    """
    Which exit condition `price` hits for an open position, if any.

    Stop-loss is checked before target.
    """
    if pos.side is OrderSide.BUY:
        if pos.stop_loss is not None and price <= pos.stop_loss:
            return STOP_LOSS_NOTE
        if pos.target is not None and price >= pos.target:
            return TARGET_NOTE
    else:
        if pos.stop_loss is not None and price >= pos.stop_loss:
            return STOP_LOSS_NOTE
        if pos.target is not None and price <= pos.target:
            return TARGET_NOTE
    return None


def limit_reached(order: Order, price: float) -> bool:
    if order.order_type is not OrderType.LIMIT:
        return False
    if order.side is OrderSide.BUY:
        return price <= order.price
    return price >= order.price


class TriggerEvaluator:
    """Closes positions on stop-loss/target and fills LIMIT orders."""

    def __init__(self, store: AccountStore, positions: PositionManager):
        self.store = store
        self.positions = positions

    def evaluate(self, ledger: AccountLedger, live_prices: Optional[Mapping[str, Any]]) -> bool:
        """
        Evaluate one account against a price snapshot.

        Args:
            ledger: Account to evaluate
            live_prices: Symbol to price (see parse_live_prices)

        Returns:
            True if any position closed or any order changed state
        """
        prices = parse_live_prices(live_prices)
        if not prices:
            return False

        uid = ledger.user_id
        triggered = False

        with self.store.transaction():
            for pos in self.store.open_positions(uid):
                price = prices.get(pos.symbol)
                if price is None:
                    continue
                note = position_trigger(pos, price)
                if note:
                    self.positions.close_position(ledger, pos.id, price, note=note)
                    triggered = True

            for order in self.store.open_orders(uid):
                price = prices.get(order.symbol)
                if price is None or not limit_reached(order, price):
                    continue
                logger.info(f"[{uid}] Limit order #{order.id} {order.side.value} {order.symbol} hit at {price:.2f}")
                self.positions.fill_limit_order(ledger, order)
                triggered = True

        return triggered

    def evaluate_all(self, live_prices: Mapping[str, Any]) -> List[str]:
        """
        Evaluate every account. A failing account is logged and skipped.

        Returns:
            User ids whose account changed
        """
        changed = []
        for uid in self.store.user_ids():
            try:
                if self.evaluate(self.store.ledger(uid), live_prices):
                    changed.append(uid)
            except Exception:
                logger.exception(f"Trigger evaluation failed for account {uid}")
        return changed

    def on_tick(self, batch: List[Tick]) -> None:
        self.evaluate_all({tick.symbol: tick.price for tick in batch})

    def attach(self, engine) -> Callable[[], None]:
        """
        Evaluate all accounts on every tick batch (push mode).

        Returns:
            Callable that detaches the evaluator
        """
        logger.info("Trigger evaluation attached to tick engine")
        return engine.add_listener(self.on_tick)
