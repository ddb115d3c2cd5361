#!/usr/bin/env python3
"""
Start the market simulator and its websocket/HTTP server.

Settings come from PAPERMARKET_* environment variables (or a .env file);
command-line flags override them.

Usage:
    python scripts/run_server.py                       # Defaults (localhost:5000, pull triggers)
    python scripts/run_server.py --port 8080 --trigger-mode push
    python scripts/run_server.py --db :memory: --seed 42
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from papermarket.config import Settings
from papermarket.distribution.server import serve_market

LOG_DIR = Path("data/logs")
LOG_DIR.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(LOG_DIR / "server.log"),
    ]
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Run the paper market simulator server"
    )
    parser.add_argument("--host", type=str, help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--db", type=str, help="SQLite path (or :memory:)")
    parser.add_argument(
        "--trigger-mode",
        choices=["pull", "push"],
        help="pull: clients submit check-triggers; push: evaluate on every tick",
    )
    parser.add_argument("--tick-interval", type=float, help="Seconds between tick batches")
    parser.add_argument("--seed", type=int, help="Random seed for a reproducible session")
    parser.add_argument("--env-file", type=str, help="Path to a .env file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = Settings.from_env(args.env_file)
        overrides = {
            "host": args.host,
            "port": args.port,
            "db_path": args.db,
            "trigger_mode": args.trigger_mode,
            "tick_interval": args.tick_interval,
            "seed": args.seed,
        }
        settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logger.info(f"Starting server: {settings}")

    try:
        asyncio.run(serve_market(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
