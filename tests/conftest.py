"""Shared fixtures."""

import numpy as np
import pytest

from papermarket.core.types import SymbolState
from papermarket.trading import AccountStore, PositionManager, TriggerEvaluator, TradingAPI


def make_state(symbol: str = "TEST.NS", price: float = 100.0, **overrides) -> SymbolState:
    """A SymbolState with a tight, realistic day range around `price`."""
    fields = dict(
        symbol=symbol,
        name=f"{symbol} Ltd",
        sector="Testing",
        industry="Fixtures",
        exchange="NSE",
        base_price=price,
        current_price=price,
        previous_close=price,
        open=price,
        day_high=price,
        day_low=price,
        fifty_two_week_high=price * 1.25,
        fifty_two_week_low=price * 0.75,
        avg_volume=1_000_000,
    )
    fields.update(overrides)
    return SymbolState(**fields)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def states():
    return {
        "RELIANCE.NS": make_state("RELIANCE.NS", 2950.0, name="Reliance Industries", sector="Energy"),
        "TCS.NS": make_state("TCS.NS", 4120.0, name="Tata Consultancy Services", sector="Technology"),
        "INFY.NS": make_state("INFY.NS", 1850.0, name="Infosys", sector="Technology"),
    }


@pytest.fixture
def store():
    s = AccountStore(":memory:", default_balance=1_000_000.0)
    yield s
    s.close()


@pytest.fixture
def manager(store):
    return PositionManager(store)


@pytest.fixture
def ledger(store):
    return store.ledger("alice")


@pytest.fixture
def evaluator(store, manager):
    return TriggerEvaluator(store, manager)


@pytest.fixture
def api(store, manager, evaluator):
    return TradingAPI(store, manager, evaluator)
