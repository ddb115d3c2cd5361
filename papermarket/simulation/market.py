"""
MarketSimulator facade.
Bundles the symbol universe, tick engine, candle synthesizer and microstructure
behind the quote/chart/search/depth APIs the server exposes.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from papermarket.config import Settings
from papermarket.core.errors import NotFoundError
from papermarket.core.types import OrderBook, SymbolState, TradePrint
from papermarket.core.universe import load_universe
from .candles import CandleSynthesizer
from .microstructure import TradeTape, build_order_book
from .tick_engine import TickEngine

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 20


class MarketSimulator:
    """Read-mostly market view shared by every subscriber connection."""

    def __init__(
        self,
        states: Dict[str, SymbolState],
        rng: Optional[np.random.Generator] = None,
        tick_interval: float = 1.0,
        candle_ttl: float = 300.0,
        timezone: str = "Asia/Kolkata",
    ):
        """
        Initialize simulator.

        Args:
            states: Symbol universe (see load_universe)
            rng: Random source shared by all stochastic components
            tick_interval: Seconds between tick batches
            candle_ttl: Chart cache lifetime in seconds
            timezone: Market timezone
        """
        self.rng = rng or np.random.default_rng()
        self.states = states
        self.engine = TickEngine(states, rng=self.rng, interval=tick_interval, timezone=timezone)
        self.candles = CandleSynthesizer(rng=self.rng, ttl=candle_ttl, timezone=timezone)
        self.tape = TradeTape(self.rng)

    @classmethod
    def from_settings(cls, settings: Settings, csv_path: Optional[Path] = None) -> "MarketSimulator":
        rng = np.random.default_rng(settings.seed)
        states = load_universe(csv_path, rng=rng)
        return cls(
            states,
            rng=rng,
            tick_interval=settings.tick_interval,
            candle_ttl=settings.candle_cache_ttl,
            timezone=settings.market_timezone,
        )

    def _state(self, symbol: str) -> SymbolState:
        state = self.states.get(symbol)
        if state is None:
            raise NotFoundError(f"Unknown symbol: {symbol}")
        return state

    def get_symbols(self) -> List[str]:
        return list(self.states.keys())

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        return self._state(symbol).to_quote()

    def get_all_quotes(self) -> List[Dict[str, Any]]:
        return [state.to_quote() for state in self.states.values()]

    def live_prices(self) -> Dict[str, float]:
        return self.engine.price_snapshot()

    def get_chart(self, symbol: str, chart_range: Any = "1mo") -> Dict[str, Any]:
        """Historical candles payload for a symbol (cached per range)."""
        state = self._state(symbol)
        return self.candles.get_chart(symbol, state.base_price, chart_range)

    def get_order_book(self, symbol: str) -> OrderBook:
        return build_order_book(self._state(symbol), self.rng)

    def get_recent_trades(self, symbol: str, count: int = 30) -> List[TradePrint]:
        return self.tape.recent(self._state(symbol), count)

    def get_live_trades(self, symbol: str) -> List[TradePrint]:
        return self.tape.live(self._state(symbol))

    def search(self, query: Optional[str]) -> List[Dict[str, Any]]:
        """
        Search stocks by symbol, name or sector.

        Args:
            query: Case-insensitive substring

        Returns:
            Up to 20 matches, symbols starting with the query first
        """
        if not query:
            return []
        q = query.lower()
        results = []

        for state in self.states.values():
            if q in state.symbol.lower() or q in state.name.lower() or q in state.sector.lower():
                results.append({
                    "symbol": state.symbol,
                    "shortName": state.name,
                    "longName": state.name,
                    "exchange": state.exchange,
                    "sector": state.sector,
                    "quoteType": "EQUITY",
                    "price": state.current_price,
                    "change": state.change,
                    "changePercent": state.change_percent,
                })

        results.sort(key=lambda r: 0 if r["symbol"].lower().startswith(q) else 1)
        return results[:MAX_SEARCH_RESULTS]
