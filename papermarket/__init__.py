"""
Papermarket - a simulated equity market with paper trading.

This package runs a stochastic price simulation for a universe of stocks,
streams ticks, order books and trade prints to subscribers, and executes
paper orders against per-user margin accounts.
"""

__version__ = "0.1.0"
