"""
Backtest fill model.

Features:
- Percentage slippage applied against the trader on every fill
- Percentage commission on traded notional, charged per side
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ExecutionModel(ABC):
    """
    Abstract base class for execution simulation models.

    Subclasses define the price a reference level actually fills at and
    the commission charged for a fill.
    """

    @abstractmethod
    def buy_price(self, reference: float) -> float:
        pass

    @abstractmethod
    def sell_price(self, reference: float) -> float:
        pass

    @abstractmethod
    def commission(self, price: float, quantity: float) -> float:
        pass


class FrictionExecution(ExecutionModel):
    """
    Constant-friction execution simulator.

    Parameters:
        slippage_pct: Percent the fill moves against the trader (0.05 = 5bps)
        commission_pct: Percent of traded notional charged per side
    """

    def __init__(self, slippage_pct: float = 0.0, commission_pct: float = 0.0):
        if slippage_pct < 0 or commission_pct < 0:
            raise ValueError("Slippage and commission must be non-negative")
        self.slippage_pct = slippage_pct
        self.commission_pct = commission_pct

    def buy_price(self, reference: float) -> float:
        """Long entries pay up."""
        return reference * (1 + self.slippage_pct / 100.0)

    def sell_price(self, reference: float) -> float:
        """Long exits give up."""
        return reference * (1 - self.slippage_pct / 100.0)

    def commission(self, price: float, quantity: float) -> float:
        return price * quantity * self.commission_pct / 100.0

    def __repr__(self) -> str:
        return (
            f"FrictionExecution(slippage_pct={self.slippage_pct}, "
            f"commission_pct={self.commission_pct})"
        )
