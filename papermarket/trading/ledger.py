"""
AccountLedger: atomic balance/margin/P&L updates for one user's account.
"""

import logging

from papermarket.core.errors import ValidationError
from papermarket.core.types import Account

logger = logging.getLogger(__name__)


class AccountLedger:
    """
    Handle on one persisted account row.

    Every PositionManager and TriggerEvaluator operation takes a ledger,
    so there is no module-level account state. Obtain one through
    AccountStore.ledger(user_id).
    """

    def __init__(self, store, user_id: str):
        self.store = store
        self.user_id = user_id

    def __repr__(self) -> str:
        return f"AccountLedger(user_id={self.user_id!r})"

    def snapshot(self) -> Account:
        return self.store.fetch_account(self.user_id)

    @property
    def balance(self) -> float:
        return self.snapshot().balance

    def next_order_id(self) -> int:
        """Allocate the next order id (monotonic and gap-free per account)."""
        with self.store.transaction():
            account = self.snapshot()
            order_id = account.order_id_counter
            self.store.update_account(self.user_id, order_id_counter=order_id + 1)
        return order_id

    def reserve_margin(self, amount: float) -> Account:
        """Move `amount` from balance into used margin."""
        with self.store.transaction():
            account = self.snapshot()
            self.store.update_account(
                self.user_id,
                balance=account.balance - amount,
                used_margin=account.used_margin + amount,
            )
            return self.snapshot()

    def release_margin(self, margin: float, pnl: float) -> Account:
        """
        Return blocked margin plus realised P&L to the balance.

        Args:
            margin: Margin previously reserved for the closed quantity
            pnl: Realised profit (negative for a loss)
        """
        with self.store.transaction():
            account = self.snapshot()
            self.store.update_account(
                self.user_id,
                balance=account.balance + margin + pnl,
                used_margin=max(0.0, account.used_margin - margin),
                realised_pnl=account.realised_pnl + pnl,
            )
            return self.snapshot()

    def add_money(self, amount, max_amount: float) -> float:
        """
        Credit the balance.

        Args:
            amount: Amount to add; must be in (0, max_amount]
            max_amount: Per-call ceiling

        Returns:
            New balance

        Raises:
            ValidationError: For non-numeric, non-positive or over-limit amounts
        """
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError("Enter a valid amount")
        if not amount > 0 or amount > max_amount:
            raise ValidationError(f"Enter a valid amount (₹1 to ₹{max_amount:,.0f})")

        with self.store.transaction():
            account = self.snapshot()
            new_balance = account.balance + amount
            self.store.update_account(self.user_id, balance=new_balance)

        logger.info(f"[{self.user_id}] Added {amount:,.2f}, balance now {new_balance:,.2f}")
        return new_balance

    def reset(self) -> Account:
        """Wipe positions and orders and restore the default balance."""
        self.store.reset_account(self.user_id)
        logger.info(f"[{self.user_id}] Account reset")
        return self.snapshot()
