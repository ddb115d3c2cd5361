"""
SQLite persistence for accounts, positions and orders.

Accounts are keyed by user id. All mutations run under one re-entrant
write lock inside BEGIN IMMEDIATE ... COMMIT, so a failed operation
rolls back without partial effects.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from papermarket.core.errors import NotFoundError
from papermarket.core.types import (
    Account, Order, OrderSide, OrderStatus, OrderType, Position, PositionStatus, ProductType
)
from .ledger import AccountLedger

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
  user_id TEXT PRIMARY KEY,
  balance REAL NOT NULL,
  used_margin REAL NOT NULL DEFAULT 0,
  realised_pnl REAL NOT NULL DEFAULT 0,
  order_id_counter INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS positions (
  account_id TEXT NOT NULL REFERENCES accounts(user_id),
  id INTEGER NOT NULL,
  symbol TEXT NOT NULL,
  side TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
  quantity INTEGER NOT NULL,
  avg_price REAL NOT NULL,
  product TEXT NOT NULL CHECK (product IN ('CNC', 'MIS')),
  stop_loss REAL,
  target REAL,
  status TEXT NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'CLOSED')),
  opened_at INTEGER NOT NULL,
  closed_at INTEGER,
  exit_price REAL,
  realised_pnl REAL NOT NULL DEFAULT 0,
  PRIMARY KEY (account_id, id)
);

CREATE TABLE IF NOT EXISTS orders (
  account_id TEXT NOT NULL REFERENCES accounts(user_id),
  id INTEGER NOT NULL,
  symbol TEXT NOT NULL,
  side TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
  quantity INTEGER NOT NULL,
  price REAL NOT NULL,
  type TEXT NOT NULL CHECK (type IN ('MARKET', 'LIMIT')),
  product TEXT NOT NULL CHECK (product IN ('CNC', 'MIS')),
  stop_loss REAL,
  target REAL,
  status TEXT NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'EXECUTED', 'CANCELLED')),
  timestamp INTEGER NOT NULL,
  executed_at INTEGER,
  note TEXT,
  PRIMARY KEY (account_id, id)
);

CREATE INDEX IF NOT EXISTS idx_positions_open ON positions(account_id, status, symbol);
CREATE INDEX IF NOT EXISTS idx_orders_open ON orders(account_id, status);
"""

# attribute name -> column name
ACCOUNT_COLUMNS = {
    "balance": "balance",
    "used_margin": "used_margin",
    "realised_pnl": "realised_pnl",
    "order_id_counter": "order_id_counter",
}
POSITION_COLUMNS = {
    "quantity": "quantity",
    "avg_price": "avg_price",
    "stop_loss": "stop_loss",
    "target": "target",
    "status": "status",
    "closed_at": "closed_at",
    "exit_price": "exit_price",
    "realised_pnl": "realised_pnl",
}
ORDER_COLUMNS = {
    "status": "status",
    "executed_at": "executed_at",
    "note": "note",
}


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class AccountStore:
    """Durable store of per-user accounts with their positions and orders."""

    def __init__(self, path: Union[str, Path] = ":memory:", default_balance: float = 1_000_000.0):
        """
        Open (and create if needed) the trading database.

        Args:
            path: SQLite file path, or ":memory:"
            default_balance: Balance for new and reset accounts
        """
        self.path = str(path)
        self.default_balance = default_balance
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.executescript(SCHEMA)
        self._migrate()

        self._lock = threading.RLock()
        self._depth = 0
        logger.info(f"AccountStore opened at {self.path}")

    def _migrate(self) -> None:
        columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(positions)")}
        if "realised_pnl" not in columns:
            self._conn.execute("ALTER TABLE positions ADD COLUMN realised_pnl REAL NOT NULL DEFAULT 0")
            logger.info("Added positions.realised_pnl column")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Serialized write transaction. Nested calls join the outer one;
        the outermost block commits, or rolls back on any exception.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self._conn.execute("COMMIT")

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def ledger(self, user_id: str, create: bool = True) -> AccountLedger:
        """
        AccountLedger handle for a user.

        Args:
            user_id: Account owner
            create: Insert the account row if it does not exist yet. Read-only
                    callers pass False and use peek_account.
        """
        if create:
            self.ensure_account(user_id)
        return AccountLedger(self, user_id)

    # --- accounts ---

    def ensure_account(self, user_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO accounts (user_id, balance) VALUES (?, ?)",
                (user_id, self.default_balance),
            )

    def user_ids(self) -> List[str]:
        return [row["user_id"] for row in self._query("SELECT user_id FROM accounts ORDER BY user_id")]

    def fetch_account(self, user_id: str) -> Account:
        rows = self._query("SELECT * FROM accounts WHERE user_id = ?", (user_id,))
        if not rows:
            raise NotFoundError(f"Unknown account: {user_id}")
        row = rows[0]
        return Account(
            user_id=row["user_id"],
            balance=row["balance"],
            used_margin=row["used_margin"],
            realised_pnl=row["realised_pnl"],
            order_id_counter=row["order_id_counter"],
        )

    def peek_account(self, user_id: str) -> Account:
        """Stored account, or an unsaved default one for users never seen before."""
        try:
            return self.fetch_account(user_id)
        except NotFoundError:
            return Account(
                user_id=user_id,
                balance=self.default_balance,
                used_margin=0.0,
                realised_pnl=0.0,
                order_id_counter=1,
            )

    def update_account(self, user_id: str, **fields) -> None:
        self._update("accounts", ACCOUNT_COLUMNS, "user_id = ?", (user_id,), fields)

    def reset_account(self, user_id: str) -> None:
        """Delete all positions and orders and restore the default balance."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM positions WHERE account_id = ?", (user_id,))
            conn.execute("DELETE FROM orders WHERE account_id = ?", (user_id,))
            conn.execute(
                "INSERT OR IGNORE INTO accounts (user_id, balance) VALUES (?, ?)",
                (user_id, self.default_balance),
            )
            conn.execute(
                "UPDATE accounts SET balance = ?, used_margin = 0, realised_pnl = 0, "
                "order_id_counter = 1 WHERE user_id = ?",
                (self.default_balance, user_id),
            )

    # --- positions ---

    def insert_position(self, pos: Position) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO positions (
                  account_id, id, symbol, side, quantity, avg_price, product,
                  stop_loss, target, status, opened_at, closed_at, exit_price, realised_pnl
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pos.account_id, pos.id, pos.symbol, pos.side.value, pos.quantity,
                    pos.avg_price, pos.product.value, pos.stop_loss, pos.target,
                    pos.status.value, pos.opened_at, pos.closed_at, pos.exit_price, pos.realised_pnl,
                ),
            )

    def update_position(self, account_id: str, position_id: int, **fields) -> None:
        self._update(
            "positions", POSITION_COLUMNS,
            "account_id = ? AND id = ?", (account_id, position_id), fields,
        )

    def get_position(self, account_id: str, position_id: int) -> Optional[Position]:
        rows = self._query(
            "SELECT * FROM positions WHERE account_id = ? AND id = ?", (account_id, position_id)
        )
        return _to_position(rows[0]) if rows else None

    def open_positions(
        self,
        account_id: str,
        symbol: Optional[str] = None,
        side: Optional[OrderSide] = None,
        product: Optional[ProductType] = None,
    ) -> List[Position]:
        """Open positions, oldest first, optionally filtered."""
        sql = "SELECT * FROM positions WHERE account_id = ? AND status = 'OPEN'"
        params: List[Any] = [account_id]
        if symbol is not None:
            sql += " AND symbol = ?"
            params.append(symbol)
        if side is not None:
            sql += " AND side = ?"
            params.append(side.value)
        if product is not None:
            sql += " AND product = ?"
            params.append(product.value)
        sql += " ORDER BY id ASC"
        return [_to_position(r) for r in self._query(sql, tuple(params))]

    def closed_positions(self, account_id: str, limit: Optional[int] = 50) -> List[Position]:
        """Closed positions, most recent first."""
        sql = "SELECT * FROM positions WHERE account_id = ? AND status = 'CLOSED' ORDER BY id DESC"
        params: tuple = (account_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (account_id, limit)
        return [_to_position(r) for r in self._query(sql, params)]

    # --- orders ---

    def insert_order(self, order: Order) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO orders (
                  account_id, id, symbol, side, quantity, price, type, product,
                  stop_loss, target, status, timestamp, executed_at, note
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.account_id, order.id, order.symbol, order.side.value, order.quantity,
                    order.price, order.order_type.value, order.product.value, order.stop_loss,
                    order.target, order.status.value, order.timestamp, order.executed_at, order.note,
                ),
            )

    def update_order(self, account_id: str, order_id: int, **fields) -> None:
        self._update(
            "orders", ORDER_COLUMNS,
            "account_id = ? AND id = ?", (account_id, order_id), fields,
        )

    def get_order(self, account_id: str, order_id: int) -> Optional[Order]:
        rows = self._query(
            "SELECT * FROM orders WHERE account_id = ? AND id = ?", (account_id, order_id)
        )
        return _to_order(rows[0]) if rows else None

    def open_orders(self, account_id: str) -> List[Order]:
        rows = self._query(
            "SELECT * FROM orders WHERE account_id = ? AND status = 'OPEN' ORDER BY id ASC",
            (account_id,),
        )
        return [_to_order(r) for r in rows]

    def executed_orders(self, account_id: str, limit: int = 50) -> List[Order]:
        rows = self._query(
            "SELECT * FROM orders WHERE account_id = ? AND status = 'EXECUTED' "
            "ORDER BY id DESC LIMIT ?",
            (account_id, limit),
        )
        return [_to_order(r) for r in rows]

    def all_orders(self, account_id: str, limit: int = 200) -> List[Order]:
        rows = self._query(
            "SELECT * FROM orders WHERE account_id = ? ORDER BY id DESC LIMIT ?",
            (account_id, limit),
        )
        return [_to_order(r) for r in rows]

    # --- helpers ---

    def _update(
        self,
        table: str,
        columns: Dict[str, str],
        where: str,
        where_params: tuple,
        fields: Dict[str, Any],
    ) -> None:
        unknown = set(fields) - set(columns)
        if unknown:
            raise ValueError(f"Cannot update {table} fields: {sorted(unknown)}")
        if not fields:
            return
        sets = ", ".join(f"{columns[name]} = ?" for name in fields)
        values = tuple(_db_value(v) for v in fields.values())
        with self.transaction() as conn:
            conn.execute(f"UPDATE {table} SET {sets} WHERE {where}", values + where_params)


def _to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        account_id=row["account_id"],
        symbol=row["symbol"],
        side=OrderSide(row["side"]),
        quantity=row["quantity"],
        avg_price=row["avg_price"],
        product=ProductType(row["product"]),
        stop_loss=row["stop_loss"],
        target=row["target"],
        status=PositionStatus(row["status"]),
        opened_at=row["opened_at"],
        closed_at=row["closed_at"],
        exit_price=row["exit_price"],
        realised_pnl=row["realised_pnl"],
    )


def _to_order(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        account_id=row["account_id"],
        symbol=row["symbol"],
        side=OrderSide(row["side"]),
        quantity=row["quantity"],
        price=row["price"],
        order_type=OrderType(row["type"]),
        product=ProductType(row["product"]),
        stop_loss=row["stop_loss"],
        target=row["target"],
        status=OrderStatus(row["status"]),
        timestamp=row["timestamp"],
        executed_at=row["executed_at"],
        note=row["note"],
    )
