"""
Margin models for paper trading.
Decide how much cash an order blocks and how much a close releases.
"""

from dataclasses import dataclass

from papermarket.core.types import ProductType


@dataclass
class MarginModel:
    """
    Product-based margin requirements.

    - CNC (delivery): full notional is blocked
    - MIS (intraday): a fraction of notional is blocked (leverage 1/mis_rate)
    """

    mis_rate: float = 0.2
    cnc_rate: float = 1.0

    def rate(self, product: ProductType) -> float:
        return self.mis_rate if product is ProductType.MIS else self.cnc_rate

    def required(self, product: ProductType, price: float, quantity: int) -> float:
        """
        Margin needed to open `quantity` at `price`.

        Args:
            product: CNC or MIS
            price: Execution price per share
            quantity: Number of shares

        Returns:
            Amount moved from balance into used margin
        """
        return price * quantity * self.rate(product)

    def per_share(self, product: ProductType, avg_price: float) -> float:
        """Margin held per share of an existing position."""
        return avg_price * self.rate(product)
