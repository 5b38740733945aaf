"""Exceptions raised by costguard."""

import time
from typing import Any, Dict, Optional


class CostGuardError(Exception):
    """Base class for costguard errors."""
    pass


class PricingError(CostGuardError, ValueError):
    """Raised when a price table is invalid (missing default, negative prices)."""
    pass


class BudgetExceededError(CostGuardError):
    """Raised in soft mode when the session budget is crossed. Catch this to save state and stop."""

    def __init__(
        self,
        message: str,
        total_cost: float,
        limit: float,
        estimated_savings: float = 0.0,
        timestamp: Optional[float] = None,
    ):
        self.total_cost = total_cost
        self.limit = limit
        self.percent_used = percent_of(total_cost, limit)
        self.estimated_savings = estimated_savings
        self.timestamp = timestamp if timestamp is not None else time.time()
        super().__init__(message)

    @property
    def data(self) -> Dict[str, Any]:
        """Structured trip context (total_cost, limit, percent_used, estimated_savings, timestamp)."""
        return {
            "total_cost": self.total_cost,
            "limit": self.limit,
            "percent_used": self.percent_used,
            "estimated_savings": self.estimated_savings,
            "timestamp": self.timestamp,
        }


class BudgetKilledError(BudgetExceededError):
    """Raised in hard-exit mode when the process could not be terminated."""
    pass


def percent_of(total: float, limit: float) -> float:
    """Percentage of limit used; 0 for an infinite limit."""
    if limit == float("inf") or limit <= 0:
        return 0.0
    return (total / limit) * 100
