"""
Tick engine.
Drives every PriceProcess on a fixed cadence and hands each batch to listeners.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

import numpy as np
import pytz

from papermarket.core.types import SymbolState, Tick, now_ms
from .price_process import PriceProcess, DEFAULT_DT

logger = logging.getLogger(__name__)

TickListener = Callable[[List[Tick]], None]


class TickEngine:
    """
    Fixed-period scheduler over all price processes.

    Each firing updates every symbol, then calls every listener
    synchronously with the batch. A failing listener is logged and
    skipped; the loop only stops on explicit shutdown.
    """

    def __init__(
        self,
        states: Dict[str, SymbolState],
        rng: Optional[np.random.Generator] = None,
        interval: float = 1.0,
        timezone: str = "Asia/Kolkata",
        dt: float = DEFAULT_DT,
    ):
        """
        Initialize tick engine.

        Args:
            states: Symbol states to simulate (mutated in place)
            rng: Shared random source for all processes
            interval: Seconds between firings
            timezone: Market timezone used to detect session (day) rollover
            dt: GBM time step per tick
        """
        self.rng = rng or np.random.default_rng()
        self.interval = interval
        self.tz = pytz.timezone(timezone)
        self.processes: Dict[str, PriceProcess] = {
            symbol: PriceProcess(state, rng=self.rng, dt=dt)
            for symbol, state in states.items()
        }
        self._listeners: List[TickListener] = []
        self._task: Optional[asyncio.Task] = None
        self._session_date: Optional[date] = None
        self.tick_count = 0

    @property
    def symbols(self) -> List[str]:
        return list(self.processes.keys())

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_state(self, symbol: str) -> Optional[SymbolState]:
        process = self.processes.get(symbol)
        return process.state if process else None

    def price_snapshot(self) -> Dict[str, float]:
        """Current price of every symbol."""
        return {s: p.state.current_price for s, p in self.processes.items()}

    def add_listener(self, listener: TickListener) -> Callable[[], None]:
        """
        Register a batch listener.

        Returns:
            Callable that unregisters the listener
        """
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: TickListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def tick(self, timestamp: Optional[int] = None) -> List[Tick]:
        """
        Run one firing: update all symbols and notify listeners.

        Args:
            timestamp: Batch time in epoch ms (defaults to now)

        Returns:
            The emitted batch
        """
        ts = timestamp if timestamp is not None else now_ms()
        self._maybe_roll_session(ts)

        batch = [process.step(ts) for process in self.processes.values()]
        self.tick_count += 1

        for listener in list(self._listeners):
            try:
                listener(batch)
            except Exception:
                logger.exception(f"Tick listener {getattr(listener, '__name__', listener)} failed")

        return batch

    def _maybe_roll_session(self, ts: int) -> None:
        """Start a new session for every symbol when the market date changes."""
        market_date = datetime.fromtimestamp(ts / 1000, tz=pytz.UTC).astimezone(self.tz).date()
        if self._session_date is None:
            self._session_date = market_date
            return
        if market_date != self._session_date:
            logger.info(f"New market session {market_date}, rolling {len(self.processes)} symbols")
            for process in self.processes.values():
                process.start_session()
            self._session_date = market_date

    async def run(self) -> None:
        """Tick every `interval` seconds until cancelled."""
        logger.info(f"Tick engine started: {len(self.processes)} symbols every {self.interval}s")
        loop = asyncio.get_running_loop()
        next_fire = loop.time()
        try:
            while True:
                self.tick()
                next_fire += self.interval
                await asyncio.sleep(max(0.0, next_fire - loop.time()))
        except asyncio.CancelledError:
            logger.info("Tick engine stopped")
            raise

    def start(self) -> asyncio.Task:
        """Schedule the engine on the running event loop (idempotent)."""
        if not self.is_running:
            self._task = asyncio.get_running_loop().create_task(self.run(), name="tick-engine")
        return self._task

    async def stop(self) -> None:
        """Cancel the scheduler task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
