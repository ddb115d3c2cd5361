"""Paper trading: account store, order lifecycle, triggers and routes."""

from .api import TradingAPI
from .ledger import AccountLedger
from .margin import MarginModel
from .positions import PositionManager
from .store import AccountStore
from .triggers import TriggerEvaluator

__all__ = [
    "AccountStore",
    "AccountLedger",
    "MarginModel",
    "PositionManager",
    "TriggerEvaluator",
    "TradingAPI",
]
