"""
Historical candle synthesis for charting.
Generates OHLCV series per (symbol, range) and caches them for a short TTL.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import numpy as np
import pandas as pd
import pytz

from papermarket.core.types import Candle, ChartRange, r2
from .price_process import gaussian_random, MIN_PRICE

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RANGE = ChartRange.ONE_MONTH
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class RangeConfig:
    """How many candles, how far apart, and how noisy, for one chart range."""

    count: int
    interval: timedelta
    volatility: float


RANGE_CONFIGS: Dict[ChartRange, RangeConfig] = {
    ChartRange.ONE_MINUTE: RangeConfig(60, timedelta(minutes=1), 0.001),
    ChartRange.FIVE_MINUTES: RangeConfig(60, timedelta(minutes=5), 0.0015),
    ChartRange.ONE_DAY: RangeConfig(78, timedelta(minutes=5), 0.003),
    ChartRange.ONE_WEEK: RangeConfig(150, timedelta(minutes=15), 0.004),
    ChartRange.ONE_MONTH: RangeConfig(30, ONE_DAY, 0.012),
    ChartRange.THREE_MONTHS: RangeConfig(90, ONE_DAY, 0.010),
    ChartRange.ONE_YEAR: RangeConfig(252, ONE_DAY, 0.015),
}


class TTLCache(Generic[T]):
    """Small in-memory cache whose entries expire `ttl` seconds after insertion."""

    def __init__(self, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._store: Dict[str, Tuple[float, T]] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: T) -> None:
        self._store[key] = (self.clock() + self.ttl, value)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


def parse_range(raw: Any) -> ChartRange:
    """Map a range string to ChartRange, falling back to 1mo for unknown values."""
    if isinstance(raw, ChartRange):
        return raw
    try:
        return ChartRange(str(raw).strip().lower())
    except ValueError:
        logger.warning(f"Unknown chart range {raw!r}, using {DEFAULT_RANGE.value}")
        return DEFAULT_RANGE


class CandleSynthesizer:
    """
    Synthesizes OHLCV history backward from a range-specific start time.

    Each candle opens at the previous close; highs and lows extend the
    open/close envelope by absolute Gaussian spikes. Daily-or-longer
    intervals skip weekends. Results are cached per (symbol, range), so
    repeated requests within the TTL return the identical series.
    Production output is intentionally not reproducible across cache
    expiry unless a seeded rng is injected.
    """

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        ttl: float = 300.0,
        timezone: str = "Asia/Kolkata",
        now: Optional[Callable[[], datetime]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize candle synthesizer.

        Args:
            rng: Random source for the series
            ttl: Cache lifetime in seconds
            timezone: Market timezone (intraday ranges start at the 09:15 open)
            now: Wall-clock provider returning an aware datetime
            clock: Monotonic clock used for cache expiry
        """
        self.rng = rng or np.random.default_rng()
        self.tz = pytz.timezone(timezone)
        self._now = now or (lambda: datetime.now(pytz.UTC))
        self.cache: TTLCache[Tuple[Candle, ...]] = TTLCache(ttl=ttl, clock=clock)

    def get_candles(self, symbol: str, base_price: float, chart_range: Any = DEFAULT_RANGE) -> List[Candle]:
        """
        Get (cached or freshly generated) candles for a symbol and range.

        Args:
            symbol: Stock symbol
            base_price: Reference price the series is built around
            chart_range: ChartRange or its string value

        Returns:
            List of Candle objects, oldest first
        """
        rng_key = parse_range(chart_range)
        key = f"{symbol}:{rng_key.value}"

        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        candles = tuple(self.generate(base_price, rng_key))
        self.cache.set(key, candles)
        logger.debug(f"Generated {len(candles)} candles for {key}")
        return list(candles)

    def get_chart(self, symbol: str, base_price: float, chart_range: Any = DEFAULT_RANGE) -> Dict[str, Any]:
        """Chart payload: {symbol, range, data: [{date, open, high, low, close, volume}]}."""
        rng_key = parse_range(chart_range)
        candles = self.get_candles(symbol, base_price, rng_key)
        return {
            "symbol": symbol,
            "range": rng_key.value,
            "data": [c.to_dict() for c in candles],
        }

    def get_frame(self, symbol: str, base_price: float, chart_range: Any = DEFAULT_RANGE) -> pd.DataFrame:
        """
        Candles as a DataFrame.

        Returns:
            DataFrame with columns: open, high, low, close, volume
            Index is datetime
        """
        candles = self.get_candles(symbol, base_price, chart_range)
        if not candles:
            return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])

        df = pd.DataFrame([
            {
                "timestamp": c.timestamp,
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ])
        df.set_index("timestamp", inplace=True)
        return df

    def start_time(self, chart_range: ChartRange, config: RangeConfig) -> datetime:
        """First candle time for a range, in the market timezone."""
        now = self._now().astimezone(self.tz)

        if chart_range is ChartRange.ONE_MINUTE:
            return now.replace(second=0, microsecond=0) - timedelta(minutes=60)
        if chart_range is ChartRange.FIVE_MINUTES:
            return now.replace(second=0, microsecond=0) - timedelta(hours=5)
        if chart_range is ChartRange.ONE_DAY:
            session_open = now.replace(hour=9, minute=15, second=0, microsecond=0, tzinfo=None)
            return self.tz.localize(session_open)
        if chart_range is ChartRange.ONE_WEEK:
            return now - timedelta(days=7)
        if chart_range is ChartRange.ONE_YEAR:
            return now - timedelta(days=365)
        return now - config.count * config.interval

    def generate(self, base_price: float, chart_range: ChartRange) -> List[Candle]:
        """
        Generate a fresh series (no caching).

        Args:
            base_price: Reference price
            chart_range: Which range configuration to use

        Returns:
            List of Candle objects; daily ranges contain fewer than
            `count` candles because weekend slots are skipped
        """
        config = RANGE_CONFIGS[chart_range]
        start = self.start_time(chart_range, config)
        daily = config.interval >= ONE_DAY
        vol = config.volatility

        price = max(MIN_PRICE, base_price * (0.93 + self.rng.random() * 0.07))
        candles: List[Candle] = []

        for i in range(config.count):
            ts = start + i * config.interval
            if daily and ts.weekday() >= 5:
                continue

            open_ = r2(price)
            close = r2(max(MIN_PRICE, open_ + price * vol * gaussian_random(self.rng)))

            spike_up = abs(price * vol * gaussian_random(self.rng) * 0.5)
            spike_down = abs(price * vol * gaussian_random(self.rng) * 0.5)
            high = r2(max(open_, close) + spike_up)
            low = r2(max(MIN_PRICE, min(open_, close) - spike_down))

            volume = int(50_000 + self.rng.random() * 500_000)

            candles.append(Candle(
                timestamp=ts,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=volume,
            ))
            price = max(MIN_PRICE, close)

        return candles
