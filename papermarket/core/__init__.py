"""Core components: types, errors, symbol universe and input sanitising."""

from .errors import (
    PaperMarketError,
    ValidationError,
    InsufficientFundsError,
    NotFoundError,
    StateError,
)
from .types import (
    SymbolState,
    Tick,
    Candle,
    BookLevel,
    OrderBook,
    TradePrint,
    Account,
    Position,
    Order,
    OrderRequest,
    OrderSide,
    OrderType,
    ProductType,
    OrderStatus,
    PositionStatus,
    TriggerMode,
    ChartRange,
)

__all__ = [
    "PaperMarketError",
    "ValidationError",
    "InsufficientFundsError",
    "NotFoundError",
    "StateError",
    "SymbolState",
    "Tick",
    "Candle",
    "BookLevel",
    "OrderBook",
    "TradePrint",
    "Account",
    "Position",
    "Order",
    "OrderRequest",
    "OrderSide",
    "OrderType",
    "ProductType",
    "OrderStatus",
    "PositionStatus",
    "TriggerMode",
    "ChartRange",
]
