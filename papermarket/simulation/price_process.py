"""
Per-symbol stochastic price model.
Evolves prices with geometric Brownian motion, one step per tick.
"""

import math
from typing import Optional

import numpy as np

from papermarket.core.types import SymbolState, Tick, now_ms, r2

# One tick ~ one wall-clock second of a 252-day, 6.5-hour trading year
TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600
DEFAULT_DT = 1.0 / TRADING_SECONDS_PER_YEAR

MIN_PRICE = 1.0


def gaussian_random(rng: np.random.Generator) -> float:
    """Standard normal variate via the Box-Muller transform."""
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = rng.random()
    while v == 0.0:
        v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


class PriceProcess:
    """
    Geometric Brownian motion for one symbol.

    price' = max(1, price + price * (mu*dt + sigma*sqrt(dt)*z))

    Day high/low track running extrema and volume grows by a random
    increment scaled to the symbol's average daily volume.
    """

    def __init__(
        self,
        state: SymbolState,
        rng: Optional[np.random.Generator] = None,
        dt: float = DEFAULT_DT,
    ):
        """
        Args:
            state: Live symbol state (mutated in place by step())
            rng: Random source; inject a seeded Generator for reproducibility
            dt: Time step as a fraction of a trading year
        """
        self.state = state
        self.rng = rng or np.random.default_rng()
        self.dt = dt
        self._sqrt_dt = math.sqrt(dt)

    @property
    def symbol(self) -> str:
        return self.state.symbol

    def step(self, timestamp: Optional[int] = None) -> Tick:
        """
        Advance the price by one tick.

        Args:
            timestamp: Tick time in epoch ms (defaults to now)

        Returns:
            Tick describing the new state
        """
        s = self.state
        ts = timestamp if timestamp is not None else now_ms()

        z = gaussian_random(self.rng)
        d_price = s.current_price * (s.drift * self.dt + s.volatility * self._sqrt_dt * z)
        s.current_price = r2(max(MIN_PRICE, s.current_price + d_price))

        if s.current_price > s.day_high:
            s.day_high = s.current_price
        if s.current_price < s.day_low:
            s.day_low = s.current_price

        tick_volume = int(50 + self.rng.random() * s.avg_volume / 6000)
        s.volume += tick_volume
        s.last_trade_qty = tick_volume
        s.last_tick_time = ts

        return Tick(
            symbol=s.symbol,
            price=s.current_price,
            change=s.change,
            change_percent=s.change_percent,
            volume=s.volume,
            day_high=s.day_high,
            day_low=s.day_low,
            last_trade_qty=tick_volume,
            timestamp=ts,
        )

    def start_session(self) -> None:
        """Roll the day: last price becomes previous close, range and volume reset."""
        s = self.state
        s.previous_close = s.current_price
        s.open = s.current_price
        s.day_high = s.current_price
        s.day_low = s.current_price
        s.volume = 0
        s.last_trade_qty = 0
