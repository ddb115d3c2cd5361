"""
Runtime configuration.
Values come from PAPERMARKET_* environment variables (optionally via .env).
"""

import os
import logging
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "PAPERMARKET_"


@dataclass
class Settings:
    """All tunables for the simulator, the trading engine and the server."""

    db_path: str = "data/trading.db"
    default_balance: float = 1_000_000.0
    max_add_money: float = 10_000_000.0
    mis_margin_rate: float = 0.2
    tick_interval: float = 1.0
    candle_cache_ttl: float = 300.0
    trigger_mode: str = "pull"
    host: str = "localhost"
    port: int = 5000
    subscriber_queue_size: int = 256
    recent_limit: int = 50
    market_timezone: str = "Asia/Kolkata"
    seed: Optional[int] = None
    default_user: str = "default"

    def __post_init__(self):
        if self.trigger_mode not in ("pull", "push"):
            raise ValueError(f"trigger_mode must be 'pull' or 'push', got {self.trigger_mode!r}")
        if self.default_balance <= 0:
            raise ValueError("default_balance must be positive")
        if not 0 < self.mis_margin_rate <= 1:
            raise ValueError("mis_margin_rate must be in (0, 1]")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Build settings from the environment.

        Args:
            env_file: Optional .env path (defaults to python-dotenv's lookup)

        Returns:
            Settings with every PAPERMARKET_* override applied
        """
        load_dotenv(env_file)

        overrides = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(f.name, raw, f.default)

        settings = cls(**overrides)
        if overrides:
            logger.info(f"Settings overridden from environment: {sorted(overrides)}")
        return settings


def _coerce(name: str, raw: str, default):
    """Convert an environment string to the type of the field default."""
    try:
        if name == "seed":
            return int(raw)
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
    return raw
