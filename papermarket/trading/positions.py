"""
Position management for paper trading.
Places, executes, closes and cancels orders against one account ledger.
"""

import logging
import math
from typing import Callable, List, Optional, Tuple

from papermarket.core.errors import (
    InsufficientFundsError, NotFoundError, StateError, ValidationError
)
from papermarket.core.types import (
    Order, OrderRequest, OrderSide, OrderStatus, OrderType, Position,
    PositionStatus, ProductType, now_ms, r2
)
from .ledger import AccountLedger
from .margin import MarginModel
from .store import AccountStore

logger = logging.getLogger(__name__)

CLOSE_NOTE = "Position closed"
UNAFFORDABLE_FILL_NOTE = "Insufficient funds at execution"


def sanitize_exits(
    side: OrderSide,
    exec_price: float,
    stop_loss: Optional[float],
    target: Optional[float],
) -> Tuple[Optional[float], Optional[float]]:
    """
    Drop stop-loss/target values on the wrong side of the execution price.

    For a BUY the stop must sit below and the target above the fill;
    a SELL mirrors this. Invalid values are discarded, not rejected.
    """
    if stop_loss is not None and stop_loss <= 0:
        stop_loss = None
    if target is not None and target <= 0:
        target = None

    if side is OrderSide.BUY:
        if stop_loss is not None and stop_loss >= exec_price:
            stop_loss = None
        if target is not None and target <= exec_price:
            target = None
    else:
        if stop_loss is not None and stop_loss <= exec_price:
            stop_loss = None
        if target is not None and target >= exec_price:
            target = None

    return stop_loss, target


class PositionManager:
    """
    Order lifecycle over an AccountStore.

    Every public operation takes the AccountLedger of the account it acts
    on and runs inside one store transaction, so a rejected operation
    leaves balance, positions and orders untouched.
    """

    def __init__(
        self,
        store: AccountStore,
        margin_model: Optional[MarginModel] = None,
        max_add_money: float = 10_000_000.0,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize position manager.

        Args:
            store: Persistence for accounts, positions and orders
            margin_model: Margin requirements per product
            max_add_money: Per-call ceiling for add_money
            clock: Epoch-millisecond time source
        """
        self.store = store
        self.margin_model = margin_model or MarginModel()
        self.max_add_money = max_add_money
        self.clock = clock

    # --- placement ---

    def place_order(self, ledger: AccountLedger, request: OrderRequest) -> Order:
        """
        Validate, persist and (for MARKET) execute an order.

        Args:
            ledger: Account to trade on
            request: Validated order request

        Returns:
            The persisted order (EXECUTED for MARKET, OPEN for LIMIT)

        Raises:
            ValidationError: Bad execution price
            InsufficientFundsError: Margin exceeds available balance
        """
        exec_price = request.exec_price
        if not exec_price > 0:
            raise ValidationError("Invalid execution price")

        stop_loss, target = sanitize_exits(
            request.side, exec_price, request.stop_loss, request.target
        )
        uid = ledger.user_id

        with self.store.transaction():
            product = self._resolve_product(uid, request)
            self._check_funds(ledger, request.symbol, request.side, request.quantity, exec_price, product)

            order = Order(
                id=ledger.next_order_id(),
                account_id=uid,
                symbol=request.symbol,
                side=request.side,
                quantity=request.quantity,
                price=exec_price,
                order_type=request.order_type,
                product=product,
                stop_loss=stop_loss,
                target=target,
                status=OrderStatus.OPEN,
                timestamp=self.clock(),
            )
            self.store.insert_order(order)

            if order.order_type is OrderType.MARKET:
                self.execute_order(ledger, order)

        logger.info(
            f"[{uid}] Order #{order.id} {order.side.value} {order.quantity} {order.symbol} "
            f"@ {exec_price:.2f} {order.order_type.value}/{product.value} -> {order.status.value}"
        )
        return order

    def _resolve_product(self, uid: str, request: OrderRequest) -> ProductType:
        """A CNC SELL not covered by open longs is treated as an intraday short."""
        if request.side is OrderSide.SELL and request.product is ProductType.CNC:
            held = sum(p.quantity for p in self.store.open_positions(uid, request.symbol, OrderSide.BUY))
            if held < request.quantity:
                logger.info(
                    f"[{uid}] CNC SELL {request.quantity} {request.symbol} exceeds holding {held}, using MIS"
                )
                return ProductType.MIS
        return request.product

    def _plan_fill(
        self, uid: str, symbol: str, side: OrderSide, quantity: int
    ) -> Tuple[List[Tuple[Position, int]], int]:
        """Opposite positions to net against (oldest first) and the leftover quantity."""
        remaining = quantity
        plan = []
        for pos in self.store.open_positions(uid, symbol, side.opposite):
            if remaining == 0:
                break
            take = min(remaining, pos.quantity)
            plan.append((pos, take))
            remaining -= take
        return plan, remaining

    def _check_funds(
        self,
        ledger: AccountLedger,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: float,
        product: ProductType,
    ) -> None:
        """
        Raise InsufficientFundsError if the new exposure cannot be margined.

        Cash released by netting against opposite positions counts towards
        the available balance.
        """
        plan, remaining = self._plan_fill(ledger.user_id, symbol, side, quantity)
        if remaining == 0:
            return

        if side is OrderSide.SELL:
            product = ProductType.MIS
        required = self.margin_model.required(product, price, remaining)
        released = sum(self._released(pos, take, price) for pos, take in plan)
        available = ledger.balance + released

        if required > available:
            logger.warning(
                f"[{ledger.user_id}] Rejected {side.value} {quantity} {symbol}: "
                f"required {required:.2f}, available {available:.2f}"
            )
            raise InsufficientFundsError(
                f"Insufficient balance. Required: ₹{required:.2f}, Available: ₹{available:.2f}"
            )

    def _released(self, pos: Position, quantity: int, price: float) -> float:
        """Margin plus P&L returned by closing `quantity` of `pos` at `price`."""
        return self.margin_model.per_share(pos.product, pos.avg_price) * quantity + pos.pnl_at(price, quantity)

    # --- execution ---

    def execute_order(self, ledger: AccountLedger, order: Order) -> Order:
        """
        Fill an order at its price.

        Opposite-side positions of the symbol are reduced or closed first
        (oldest first), realising P&L and releasing margin. Any remaining
        quantity opens, or averages into, a position for (symbol, side,
        product); a SELL remainder is always an MIS short.

        Raises:
            StateError: Order is not OPEN
            InsufficientFundsError: Remainder cannot be margined
        """
        if order.status is not OrderStatus.OPEN:
            raise StateError(f"Order #{order.id} is {order.status.value}")

        uid = ledger.user_id
        price = order.price
        ts = self.clock()

        with self.store.transaction():
            self._check_funds(ledger, order.symbol, order.side, order.quantity, price, order.product)
            plan, remaining = self._plan_fill(uid, order.symbol, order.side, order.quantity)

            for pos, take in plan:
                pnl = pos.pnl_at(price, take)
                margin = self.margin_model.per_share(pos.product, pos.avg_price) * take
                ledger.release_margin(margin, pnl)
                realised = pos.realised_pnl + pnl
                if take == pos.quantity:
                    self.store.update_position(
                        uid, pos.id, status=PositionStatus.CLOSED, closed_at=ts, exit_price=price,
                        realised_pnl=realised,
                    )
                else:
                    self.store.update_position(
                        uid, pos.id, quantity=pos.quantity - take, realised_pnl=realised
                    )
                logger.info(f"[{uid}] Netted {take} of position #{pos.id} {pos.symbol}, pnl {pnl:.2f}")

            if remaining > 0:
                self._open_or_average(ledger, order, remaining, ts)

            self.store.update_order(uid, order.id, status=OrderStatus.EXECUTED, executed_at=ts)

        order.status = OrderStatus.EXECUTED
        order.executed_at = ts
        return order

    def _open_or_average(self, ledger: AccountLedger, order: Order, quantity: int, ts: int) -> None:
        uid = ledger.user_id
        product = order.product if order.side is OrderSide.BUY else ProductType.MIS
        ledger.reserve_margin(self.margin_model.required(product, order.price, quantity))

        existing = self.store.open_positions(uid, order.symbol, order.side, product)
        if existing:
            pos = existing[0]
            total = pos.quantity + quantity
            avg_price = (pos.quantity * pos.avg_price + quantity * order.price) / total
            self.store.update_position(
                uid, pos.id,
                quantity=total,
                avg_price=avg_price,
                stop_loss=order.stop_loss if order.stop_loss is not None else pos.stop_loss,
                target=order.target if order.target is not None else pos.target,
            )
            logger.info(f"[{uid}] Averaged position #{pos.id} {order.symbol}: {total} @ {avg_price:.2f}")
            return

        self.store.insert_position(Position(
            id=order.id,
            account_id=uid,
            symbol=order.symbol,
            side=order.side,
            quantity=quantity,
            avg_price=order.price,
            product=product,
            stop_loss=order.stop_loss,
            target=order.target,
            opened_at=ts,
        ))
        logger.info(f"[{uid}] Opened position #{order.id} {order.side.value} {quantity} {order.symbol}")

    def fill_limit_order(self, ledger: AccountLedger, order: Order) -> bool:
        """
        Execute a triggered LIMIT order, cancelling it if it is no longer affordable.

        Returns:
            True if the order was executed
        """
        try:
            self.execute_order(ledger, order)
            return True
        except InsufficientFundsError:
            self.store.update_order(
                ledger.user_id, order.id, status=OrderStatus.CANCELLED, note=UNAFFORDABLE_FILL_NOTE
            )
            logger.warning(f"[{ledger.user_id}] Limit order #{order.id} cancelled: {UNAFFORDABLE_FILL_NOTE}")
            return False

    # --- close / cancel ---

    def close_position(
        self,
        ledger: AccountLedger,
        position_id: int,
        current_price: float,
        note: str = CLOSE_NOTE,
    ) -> float:
        """
        Close an open position at the given price.

        Args:
            ledger: Owning account
            position_id: Position to close
            current_price: Exit price
            note: Audit note stored on the closing order

        Returns:
            Realised P&L

        Raises:
            ValidationError: Non-positive or non-finite price
            NotFoundError: Unknown position
            StateError: Position already closed
        """
        if not (math.isfinite(current_price) and current_price > 0):
            raise ValidationError("Invalid price")

        uid = ledger.user_id
        ts = self.clock()

        with self.store.transaction():
            pos = self.store.get_position(uid, position_id)
            if pos is None:
                raise NotFoundError(f"Position #{position_id} not found")
            if not pos.is_open:
                raise StateError(f"Position #{position_id} is already closed")

            pnl = pos.pnl_at(current_price)
            margin = self.margin_model.per_share(pos.product, pos.avg_price) * pos.quantity
            ledger.release_margin(margin, pnl)
            self.store.update_position(
                uid, pos.id, status=PositionStatus.CLOSED, closed_at=ts, exit_price=current_price,
                realised_pnl=pos.realised_pnl + pnl,
            )
            self.store.insert_order(Order(
                id=ledger.next_order_id(),
                account_id=uid,
                symbol=pos.symbol,
                side=pos.side.opposite,
                quantity=pos.quantity,
                price=current_price,
                order_type=OrderType.MARKET,
                product=pos.product,
                status=OrderStatus.EXECUTED,
                timestamp=ts,
                executed_at=ts,
                note=note,
            ))

        logger.info(
            f"[{uid}] {note}: #{pos.id} {pos.side.value} {pos.quantity} {pos.symbol} "
            f"@ {current_price:.2f}, pnl {pnl:.2f}"
        )
        return r2(pnl)

    def cancel_order(self, ledger: AccountLedger, order_id: int) -> Order:
        """
        Cancel an unfilled LIMIT order. No ledger effect.

        Raises:
            NotFoundError: Unknown order
            StateError: Order is not OPEN
        """
        uid = ledger.user_id
        with self.store.transaction():
            order = self.store.get_order(uid, order_id)
            if order is None:
                raise NotFoundError(f"Order #{order_id} not found")
            if order.status is not OrderStatus.OPEN:
                raise StateError(f"Order #{order_id} is {order.status.value}, only open orders can be cancelled")
            self.store.update_order(uid, order_id, status=OrderStatus.CANCELLED)

        order.status = OrderStatus.CANCELLED
        logger.info(f"[{uid}] Cancelled order #{order_id}")
        return order

    # --- account ---

    def reset_account(self, ledger: AccountLedger):
        return ledger.reset()

    def add_money(self, ledger: AccountLedger, amount) -> float:
        return ledger.add_money(amount, self.max_add_money)
