"""
Symbol universe loading.
Reads stock fundamentals from the bundled CSV and seeds live simulation state.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .types import SymbolState, now_ms, r2

logger = logging.getLogger(__name__)

DEFAULT_CSV = Path(__file__).parent / "data" / "stocks.csv"

# Market indices simulated alongside the stocks
INDICES: List[Dict[str, Any]] = [
    {
        "symbol": "^NSEI", "name": "NIFTY 50", "exchange": "NSE",
        "basePrice": 25000, "previousClose": 24950,
        "fiftyTwoWeekHigh": 26500, "fiftyTwoWeekLow": 21800, "beta": 0.9,
    },
    {
        "symbol": "^BSESN", "name": "S&P BSE SENSEX", "exchange": "BSE",
        "basePrice": 82000, "previousClose": 81800,
        "fiftyTwoWeekHigh": 86000, "fiftyTwoWeekLow": 71000, "beta": 0.9,
    },
    {
        "symbol": "^NSEBANK", "name": "NIFTY BANK", "exchange": "NSE",
        "basePrice": 55000, "previousClose": 54800,
        "fiftyTwoWeekHigh": 58500, "fiftyTwoWeekLow": 44000, "beta": 1.1,
    },
]

STOCK_VOL_PER_BETA = 0.20
INDEX_VOL_PER_BETA = 0.15
STOCK_DRIFT = 0.00005
INDEX_DRIFT = 0.00003


def _value(row: Dict[str, Any], key: str, default=None):
    """Read a CSV cell, mapping blanks/NaN to the default."""
    v = row.get(key)
    if v is None or (isinstance(v, float) and np.isnan(v)) or v == "":
        return default
    return v


def _float(row: Dict[str, Any], key: str, default=None) -> Optional[float]:
    v = _value(row, key, default)
    return None if v is None else float(v)


def load_universe(
    csv_path: Optional[Path] = None,
    rng: Optional[np.random.Generator] = None,
    include_indices: bool = True,
) -> Dict[str, SymbolState]:
    """
    Load the simulated symbol universe.

    Each start gets a slight price jitter so sessions differ.

    Args:
        csv_path: CSV with one row per stock (defaults to the bundled file)
        rng: Random source for the start-up jitter
        include_indices: Also add the synthetic market indices

    Returns:
        Dict mapping symbol to its initial SymbolState
    """
    rng = rng or np.random.default_rng()
    path = Path(csv_path) if csv_path else DEFAULT_CSV

    df = pd.read_csv(path)
    if "symbol" not in df.columns:
        raise ValueError(f"Universe file {path} has no 'symbol' column")

    stamp = now_ms()
    states: Dict[str, SymbolState] = {}

    for row in df.to_dict(orient="records"):
        symbol = str(row["symbol"]).strip()
        base_price = float(_value(row, "basePrice", 1000.0))
        beta = float(_value(row, "beta", 1.0))

        jitter = 1 + (rng.random() - 0.5) * 0.01
        current = r2(base_price * jitter)

        states[symbol] = SymbolState(
            symbol=symbol,
            name=str(_value(row, "name", symbol)),
            sector=str(_value(row, "sector", "")),
            industry=str(_value(row, "industry", "")),
            exchange=str(_value(row, "exchange", "NSE")),
            base_price=base_price,
            current_price=current,
            previous_close=float(_value(row, "previousClose", r2(base_price * 0.998))),
            open=r2(current + (rng.random() - 0.5) * base_price * 0.005),
            day_high=r2(current * (1 + rng.random() * 0.008)),
            day_low=r2(current * (1 - rng.random() * 0.008)),
            fifty_two_week_high=float(_value(row, "fiftyTwoWeekHigh", r2(base_price * 1.25))),
            fifty_two_week_low=float(_value(row, "fiftyTwoWeekLow", r2(base_price * 0.75))),
            avg_volume=float(_value(row, "avgVolume", 10_000_000)),
            market_cap=_float(row, "marketCap", base_price * 5e9),
            pe_ratio=_float(row, "peRatio"),
            pb_ratio=_float(row, "pbRatio"),
            eps=_float(row, "eps"),
            book_value=_float(row, "bookValue"),
            dividend_yield=_float(row, "dividendYield"),
            beta=beta,
            volatility=beta * STOCK_VOL_PER_BETA,
            drift=STOCK_DRIFT,
            last_tick_time=stamp,
        )

    if include_indices:
        for idx in INDICES:
            base_price = float(idx["basePrice"])
            current = r2(base_price * (1 + (rng.random() - 0.5) * 0.005))
            states[idx["symbol"]] = SymbolState(
                symbol=idx["symbol"],
                name=idx["name"],
                sector="Indices",
                industry="Market Index",
                exchange=idx["exchange"],
                base_price=base_price,
                current_price=current,
                previous_close=float(idx["previousClose"]),
                open=r2(current + (rng.random() - 0.5) * base_price * 0.002),
                day_high=r2(current * (1 + rng.random() * 0.005)),
                day_low=r2(current * (1 - rng.random() * 0.005)),
                fifty_two_week_high=float(idx["fiftyTwoWeekHigh"]),
                fifty_two_week_low=float(idx["fiftyTwoWeekLow"]),
                avg_volume=50_000_000,
                market_cap=0.0,
                beta=idx["beta"],
                volatility=idx["beta"] * INDEX_VOL_PER_BETA,
                drift=INDEX_DRIFT,
                last_tick_time=stamp,
            )

    logger.info(f"Loaded {len(states)} symbols (incl. indices) from {path}")
    return states
