"""Simulation components: price processes, tick engine, candles and microstructure."""

from .price_process import PriceProcess, gaussian_random
from .tick_engine import TickEngine
from .candles import CandleSynthesizer, TTLCache
from .market import MarketSimulator

__all__ = [
    "PriceProcess",
    "gaussian_random",
    "TickEngine",
    "CandleSynthesizer",
    "TTLCache",
    "MarketSimulator",
]
