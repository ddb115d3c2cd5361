"""Error taxonomy for market and trading operations."""


class PaperMarketError(Exception):
    """Base class for errors reported back to the caller."""


class ValidationError(PaperMarketError):
    """Bad symbol, quantity, price, side or amount. Rejected before any mutation."""


class InsufficientFundsError(PaperMarketError):
    """Required margin exceeds the available balance."""


class NotFoundError(PaperMarketError):
    """Unknown symbol, position or order id."""


class StateError(PaperMarketError):
    """Operation not allowed in the current state (e.g. closing a closed position)."""
