"""Account metrics and reporting components."""

from .calculator import MetricsCalculator
from .reporter import Reporter

__all__ = ["MetricsCalculator", "Reporter"]
