"""
Transport-neutral trading routes.

TradingAPI.handle(method, path, body, user_id) returns (status, body) so the
same routes can be served over websocket frames or plain HTTP.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from papermarket.core.errors import (
    InsufficientFundsError, NotFoundError, PaperMarketError, StateError, ValidationError
)
from papermarket.core.types import OrderRequest
from papermarket.metrics.calculator import MetricsCalculator
from .ledger import AccountLedger
from .positions import PositionManager
from .store import AccountStore
from .triggers import TriggerEvaluator, parse_live_prices

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, Any]]

ERROR_STATUS = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (InsufficientFundsError, 400),
    (StateError, 400),
]


def error_status(exc: Exception) -> int:
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def _price_arg(body: Mapping[str, Any], key: str) -> float:
    raw = body.get(key)
    if isinstance(raw, bool):
        raise ValidationError("Invalid price")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid price")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Invalid price")
    return value


class TradingAPI:
    """
    Trading routes for one AccountStore.

    Routes:
        GET  /account, /positions, /orders, /summary
        POST /order, /close/<id>, /cancel/<id>, /check-triggers, /reset, /add-money
    """

    def __init__(
        self,
        store: AccountStore,
        positions: PositionManager,
        triggers: TriggerEvaluator,
        metrics: Optional[MetricsCalculator] = None,
        price_source: Optional[Callable[[], Dict[str, float]]] = None,
        default_user: str = "default",
        recent_limit: int = 50,
    ):
        """
        Initialize routes.

        Args:
            store: Account persistence
            positions: Order lifecycle manager
            triggers: Stop-loss/target/limit evaluator
            metrics: Summary calculator
            price_source: Live prices for /summary when the caller sends none
            default_user: Account used when a request carries no user
            recent_limit: Closed positions / executed orders returned by listings
        """
        self.store = store
        self.positions = positions
        self.triggers = triggers
        self.metrics = metrics or MetricsCalculator(store.default_balance)
        self.price_source = price_source
        self.default_user = default_user
        self.recent_limit = recent_limit

        self._routes: List[Tuple[str, re.Pattern, Callable[..., Dict[str, Any]]]] = [
            ("GET", re.compile(r"^/account$"), self.get_account),
            ("GET", re.compile(r"^/positions$"), self.get_positions),
            ("GET", re.compile(r"^/orders$"), self.get_orders),
            ("GET", re.compile(r"^/summary$"), self.get_summary),
            ("POST", re.compile(r"^/order$"), self.post_order),
            ("POST", re.compile(r"^/close/(\d+)$"), self.post_close),
            ("POST", re.compile(r"^/cancel/(\d+)$"), self.post_cancel),
            ("POST", re.compile(r"^/check-triggers$"), self.post_check_triggers),
            ("POST", re.compile(r"^/reset$"), self.post_reset),
            ("POST", re.compile(r"^/add-money$"), self.post_add_money),
        ]

    def handle(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Response:
        """
        Dispatch one request.

        Args:
            method: "GET" or "POST"
            path: Route path, e.g. "/close/3" (a trailing slash is ignored)
            body: Request payload for POST routes
            user_id: Account owner (default user when missing)

        Returns:
            (status, response body)
        """
        method = (method or "GET").upper()
        path = "/" + (path or "").strip("/")
        if body is not None and not isinstance(body, Mapping):
            return 400, {"success": False, "error": "Request body must be an object"}
        body = body or {}

        allowed = False
        for route_method, pattern, handler in self._routes:
            match = pattern.match(path)
            if not match:
                continue
            allowed = True
            if route_method != method:
                continue

            # reads never create an account row
            ledger = self.store.ledger(user_id or self.default_user, create=method == "POST")
            try:
                return 200, handler(ledger, body, *match.groups())
            except PaperMarketError as exc:
                status = error_status(exc)
                logger.warning(f"{method} {path} rejected ({status}): {exc}")
                return status, {"success": False, "error": str(exc)}
            except Exception as exc:
                logger.exception(f"{method} {path} failed")
                return 500, {"success": False, "error": str(exc)}

        if allowed:
            return 405, {"success": False, "error": f"Method {method} not allowed on {path}"}
        return 404, {"success": False, "error": f"Unknown route {path}"}

    # --- queries ---

    def get_account(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        return self.store.peek_account(ledger.user_id).to_dict()

    def get_positions(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        uid = ledger.user_id
        return {
            "open": [p.to_dict() for p in self.store.open_positions(uid)],
            "closed": [p.to_dict() for p in self.store.closed_positions(uid, self.recent_limit)],
        }

    def get_orders(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        uid = ledger.user_id
        return {
            "open": [o.to_dict() for o in self.store.open_orders(uid)],
            "executed": [o.to_dict() for o in self.store.executed_orders(uid, self.recent_limit)],
        }

    def get_summary(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        prices = body.get("livePrices")
        if prices is None and self.price_source is not None:
            prices = self.price_source()
        prices = parse_live_prices(prices)

        uid = ledger.user_id
        return self.metrics.account_summary(
            self.store.peek_account(uid),
            self.store.open_positions(uid),
            self.store.closed_positions(uid, limit=None),
            prices,
        )

    # --- commands ---

    def post_order(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        request = OrderRequest.from_payload(dict(body))
        order = self.positions.place_order(ledger, request)
        return {"success": True, "order": order.to_dict()}

    def post_close(self, ledger: AccountLedger, body: Mapping[str, Any], position_id: str) -> Dict[str, Any]:
        price = _price_arg(body, "currentPrice")
        pnl = self.positions.close_position(ledger, int(position_id), price)
        return {"success": True, "pnl": pnl}

    def post_cancel(self, ledger: AccountLedger, body: Mapping[str, Any], order_id: str) -> Dict[str, Any]:
        self.positions.cancel_order(ledger, int(order_id))
        return {"success": True}

    def post_check_triggers(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        live_prices = body.get("livePrices")
        if not isinstance(live_prices, Mapping):
            return {"triggered": False}
        return {"triggered": self.triggers.evaluate(ledger, live_prices)}

    def post_reset(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.positions.reset_account(ledger)
        return {"success": True}

    def post_add_money(self, ledger: AccountLedger, body: Mapping[str, Any]) -> Dict[str, Any]:
        new_balance = self.positions.add_money(ledger, body.get("amount"))
        return {"success": True, "newBalance": new_balance}
