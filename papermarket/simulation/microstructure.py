"""
Synthetic market microstructure: depth ladders and trade prints.
"""

import itertools
from typing import List, Optional

import numpy as np

from papermarket.core.types import BookLevel, OrderBook, SymbolState, TradePrint, now_ms, r2
from .price_process import gaussian_random, MIN_PRICE

SPREAD_FRACTION = 0.0005
BOOK_LEVELS = 5
BUY_AGGRESSOR_THRESHOLD = 0.45


def build_order_book(
    state: SymbolState,
    rng: np.random.Generator,
    levels: int = BOOK_LEVELS,
    spread_fraction: float = SPREAD_FRACTION,
) -> OrderBook:
    """
    Generate a depth ladder around the current price.

    Level i sits (i+1) spreads away from the price plus a little noise;
    quantities are random and `total` is the cumulative quantity.
    """
    price = state.current_price
    spread = price * spread_fraction
    bids: List[BookLevel] = []
    asks: List[BookLevel] = []

    for i in range(levels):
        bid_price = r2(price - spread * (i + 1) - rng.random() * spread * 0.3)
        ask_price = r2(price + spread * (i + 1) + rng.random() * spread * 0.3)
        bids.append(BookLevel(
            price=bid_price,
            quantity=int(50 + rng.random() * 2000),
            orders=int(1 + rng.random() * 20),
        ))
        asks.append(BookLevel(
            price=ask_price,
            quantity=int(50 + rng.random() * 2000),
            orders=int(1 + rng.random() * 20),
        ))

    for ladder in (bids, asks):
        running = 0
        for level in ladder:
            running += level.quantity
            level.total = running

    return OrderBook(symbol=state.symbol, bids=bids, asks=asks)


class TradeTape:
    """Issues synthetic trade prints with unique ids."""

    def __init__(self, rng: np.random.Generator):
        self.rng = rng
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"t-{next(self._ids)}"

    def _side(self) -> str:
        return "buy" if self.rng.random() > BUY_AGGRESSOR_THRESHOLD else "sell"

    def recent(self, state: SymbolState, count: int = 30, now: Optional[int] = None) -> List[TradePrint]:
        """Back-filled history of `count` prints, 1.5 s apart, ending now."""
        now = now if now is not None else now_ms()
        price = state.current_price
        prints = []
        for i in range(count):
            price = r2(max(MIN_PRICE, price + price * 0.001 * gaussian_random(self.rng)))
            ts = now - (count - i) * 1500
            prints.append(TradePrint(
                id=self._next_id(),
                price=price,
                quantity=int(10 + self.rng.random() * 500),
                side=self._side(),
                timestamp=ts,
            ))
        return prints

    def live(self, state: SymbolState, now: Optional[int] = None) -> List[TradePrint]:
        """1-3 prints scattered within 0.05% of the current price."""
        now = now if now is not None else now_ms()
        count = 1 + int(self.rng.random() * 3)
        prints = []
        for _ in range(count):
            price = state.current_price + (self.rng.random() - 0.5) * state.current_price * 0.001
            prints.append(TradePrint(
                id=self._next_id(),
                price=r2(max(MIN_PRICE, price)),
                quantity=int(10 + self.rng.random() * 500),
                side=self._side(),
                timestamp=now,
            ))
        return prints
