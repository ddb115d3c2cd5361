"""
Core data types shared across the simulation, distribution and trading layers.
Wire payloads use the camelCase field names clients expect.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .sanitize import sanitize_symbol


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def r2(value: float) -> float:
    """Round to 2 decimal places (price precision)."""
    return round(value, 2)


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class ProductType(Enum):
    """CNC is delivery (full notional margin), MIS is intraday (leveraged)."""

    CNC = "CNC"
    MIS = "MIS"


class OrderStatus(Enum):
    OPEN = "OPEN"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"


class PositionStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TriggerMode(Enum):
    """How stop-loss/target/limit checks are driven."""

    PULL = "pull"   # caller submits a live-price snapshot
    PUSH = "push"   # evaluated on every tick batch


class ChartRange(Enum):
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1mo"
    THREE_MONTHS = "3mo"
    ONE_YEAR = "1y"


@dataclass
class SymbolState:
    """
    Mutable live state for one simulated symbol.

    Owned by the price simulation; the trading layer never touches it.
    """

    symbol: str
    name: str
    sector: str
    industry: str
    exchange: str

    base_price: float
    current_price: float
    previous_close: float
    open: float
    day_high: float
    day_low: float
    fifty_two_week_high: float
    fifty_two_week_low: float

    avg_volume: float
    volume: int = 0
    last_trade_qty: int = 0

    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    eps: Optional[float] = None
    book_value: Optional[float] = None
    dividend_yield: Optional[float] = None
    beta: float = 1.0

    volatility: float = 0.20  # annualized sigma
    drift: float = 0.00005    # annualized mu
    last_tick_time: int = 0
    market_state: str = "REGULAR"
    currency: str = "INR"

    @property
    def change(self) -> float:
        return r2(self.current_price - self.previous_close)

    @property
    def change_percent(self) -> float:
        if self.previous_close == 0:
            return 0.0
        return r2((self.current_price - self.previous_close) / self.previous_close * 100)

    def to_quote(self) -> Dict[str, Any]:
        """Quote payload for REST and websocket clients."""
        return {
            "symbol": self.symbol,
            "shortName": self.name,
            "longName": self.name,
            "price": self.current_price,
            "change": self.change,
            "changePercent": self.change_percent,
            "previousClose": self.previous_close,
            "open": self.open,
            "dayHigh": self.day_high,
            "dayLow": self.day_low,
            "volume": self.volume,
            "marketCap": self.market_cap,
            "fiftyTwoWeekHigh": self.fifty_two_week_high,
            "fiftyTwoWeekLow": self.fifty_two_week_low,
            "exchange": self.exchange,
            "marketState": self.market_state,
            "currency": self.currency,
            "peRatio": self.pe_ratio,
            "pbRatio": self.pb_ratio,
            "eps": self.eps,
            "bookValue": self.book_value,
            "dividendYield": self.dividend_yield,
        }


@dataclass(frozen=True)
class Tick:
    """One symbol's delta inside a tick batch."""

    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int
    day_high: float
    day_low: float
    last_trade_qty: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "dayHigh": self.day_high,
            "dayLow": self.day_low,
            "lastTradeQty": self.last_trade_qty,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Candle:
    """OHLCV candle. Immutable once generated."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class BookLevel:
    price: float
    quantity: int
    orders: int
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "quantity": self.quantity,
            "orders": self.orders,
            "total": self.total,
        }


@dataclass
class OrderBook:
    """Synthetic depth ladder around the current price."""

    symbol: str
    bids: List[BookLevel]
    asks: List[BookLevel]

    @property
    def spread(self) -> float:
        if not self.bids or not self.asks:
            return 0.0
        return r2(self.asks[0].price - self.bids[0].price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bids": [b.to_dict() for b in self.bids],
            "asks": [a.to_dict() for a in self.asks],
            "spread": self.spread,
        }


@dataclass(frozen=True)
class TradePrint:
    id: str
    price: float
    quantity: int
    side: str  # "buy" or "sell" aggressor
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "price": self.price,
            "quantity": self.quantity,
            "time": self.timestamp,
            "type": self.side,
            "timestamp": self.timestamp,
        }


@dataclass
class Account:
    """Snapshot of one user's ledger row."""

    user_id: str
    balance: float
    used_margin: float
    realised_pnl: float
    order_id_counter: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "balance": self.balance,
            "usedMargin": self.used_margin,
            "realisedPnL": self.realised_pnl,
            "orderIdCounter": self.order_id_counter,
        }


@dataclass
class Position:
    id: int
    account_id: str
    symbol: str
    side: OrderSide
    quantity: int
    avg_price: float
    product: ProductType
    stop_loss: Optional[float] = None
    target: Optional[float] = None
    status: PositionStatus = PositionStatus.OPEN
    opened_at: int = field(default_factory=now_ms)
    closed_at: Optional[int] = None
    exit_price: Optional[float] = None
    realised_pnl: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def pnl_at(self, price: float, quantity: Optional[int] = None) -> float:
        """Directional P&L if `quantity` (default: all) were closed at `price`."""
        qty = self.quantity if quantity is None else quantity
        if self.side is OrderSide.BUY:
            return (price - self.avg_price) * qty
        return (self.avg_price - price) * qty

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "avgPrice": self.avg_price,
            "product": self.product.value,
            "stopLoss": self.stop_loss,
            "target": self.target,
            "status": self.status.value,
            "openedAt": self.opened_at,
            "closedAt": self.closed_at,
            "exitPrice": self.exit_price,
            "realisedPnL": self.realised_pnl,
        }


@dataclass
class Order:
    id: int
    account_id: str
    symbol: str
    side: OrderSide
    quantity: int
    price: float
    order_type: OrderType
    product: ProductType
    stop_loss: Optional[float] = None
    target: Optional[float] = None
    status: OrderStatus = OrderStatus.OPEN
    timestamp: int = field(default_factory=now_ms)
    executed_at: Optional[int] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "type": self.order_type.value,
            "product": self.product.value,
            "stopLoss": self.stop_loss,
            "target": self.target,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "executedAt": self.executed_at,
            "note": self.note,
        }


@dataclass(frozen=True)
class OrderRequest:
    """
    A validated order placement request.

    Built once at the boundary (from_payload); downstream code can trust
    every field.
    """

    symbol: str
    side: OrderSide
    quantity: int
    price: float
    order_type: OrderType = OrderType.MARKET
    product: ProductType = ProductType.CNC
    limit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    target: Optional[float] = None

    @property
    def exec_price(self) -> float:
        """Limit price for LIMIT orders (falling back to price), else price."""
        if self.order_type is OrderType.LIMIT and self.limit_price:
            return self.limit_price
        return self.price

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "OrderRequest":
        """
        Parse and validate a loosely-typed order payload.

        Args:
            payload: Dict with symbol, side, quantity, price and optional
                     type, limitPrice, product, stopLoss, target

        Returns:
            OrderRequest

        Raises:
            ValidationError: If any required field is missing or invalid
        """
        if not isinstance(payload, dict):
            raise ValidationError("Order payload must be an object")

        raw_symbol = payload.get("symbol")
        if not isinstance(raw_symbol, str) or not raw_symbol.strip():
            raise ValidationError("Symbol is required")
        symbol = sanitize_symbol(raw_symbol)
        if symbol is None:
            raise ValidationError(f"Invalid symbol: {raw_symbol!r}")

        side = _parse_enum(OrderSide, payload.get("side"), "side")
        order_type = _parse_enum(OrderType, payload.get("type", "MARKET"), "order type")
        product = _parse_enum(ProductType, payload.get("product", "CNC"), "product")

        quantity = payload.get("quantity")
        if isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")

        price = _parse_number(payload.get("price"), "price")
        if price is None or price <= 0:
            raise ValidationError("Invalid price")

        limit_price = _parse_number(payload.get("limitPrice"), "limit price")
        if limit_price is not None and limit_price <= 0:
            raise ValidationError("Invalid execution price")

        return cls(
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            order_type=order_type,
            product=product,
            limit_price=limit_price,
            stop_loss=_parse_number(payload.get("stopLoss"), "stop loss"),
            target=_parse_number(payload.get("target"), "target"),
        )


def _parse_enum(enum_cls, raw, label: str):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).upper())
    except ValueError:
        raise ValidationError(f"Invalid {label}: {raw!r}")


def _parse_number(raw, label: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid {label}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {raw!r}")
    if not math.isfinite(value):
        raise ValidationError(f"Invalid {label}: {raw!r}")
    return value
