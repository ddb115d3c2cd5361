"""Market data distribution: subscriber fan-out and the network server."""

from .hub import DistributionHub, Subscriber
from .server import MarketServer, serve_market

__all__ = ["DistributionHub", "Subscriber", "MarketServer", "serve_market"]
