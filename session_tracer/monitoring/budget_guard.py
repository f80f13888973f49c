"""
Cost/Budget Guard - per-session spending ceiling

The guard keeps a running total for one session and reports threshold
crossings as ``BudgetOutcome`` values. The caller decides what to do with
them (log, record a diagnostic, request cancellation).
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BudgetOutcome(str, Enum):
    """Result of one cost increment"""
    OK = "ok"
    WARN_THRESHOLD_CROSSED = "warn_threshold_crossed"
    BUDGET_EXCEEDED = "budget_exceeded"


class CostPolicy(BaseModel):
    """Budget configuration for one guarded session"""
    model_config = ConfigDict(frozen=True)

    max_cost_per_request: float = Field(gt=0, description="Hard cap in USD")
    warn_at_percent: float = Field(default=80.0, gt=0, le=100, description="Warn threshold, percent of the cap")

    @property
    def warn_threshold(self) -> float:
        return self.warn_at_percent * self.max_cost_per_request / 100

    @classmethod
    def from_config(cls, budget_config) -> "CostPolicy":
        return cls(
            max_cost_per_request=budget_config.max_cost_per_request,
            warn_at_percent=budget_config.warn_at_percent,
        )


class BudgetGuard:
    """
    Budget Guard

    Each threshold reports once: after the warn crossing, further increments
    above the warn line return ``OK`` until the cap is reached, and the cap
    crossing itself is reported once.

    Usage:
        guard = BudgetGuard(CostPolicy(max_cost_per_request=1.00, warn_at_percent=80))
        outcomes = guard.on_cost_increment(0.85)   # [WARN_THRESHOLD_CROSSED]
        outcomes = guard.on_cost_increment(0.20)   # [BUDGET_EXCEEDED]
    """

    def __init__(self, policy: CostPolicy):
        self.policy = policy
        self._total = 0.0
        self._warned = False
        self._exceeded = False

    @property
    def total(self) -> float:
        return self._total

    @property
    def warned(self) -> bool:
        return self._warned

    @property
    def exceeded(self) -> bool:
        return self._exceeded

    @property
    def remaining(self) -> float:
        return max(0.0, self.policy.max_cost_per_request - self._total)

    def on_cost_increment(self, amount: float) -> List[BudgetOutcome]:
        """
        Add a cost increment and report threshold crossings

        Args:
            amount: Non-negative cost in USD

        Returns:
            ``[OK]`` or the crossings caused by this increment, warn first

        Raises:
            ValueError: amount is negative
        """
        if amount < 0:
            raise ValueError(f"Cost increment must be non-negative, got {amount}")

        self._total += amount
        outcomes: List[BudgetOutcome] = []

        if not self._warned and self._total >= self.policy.warn_threshold:
            self._warned = True
            outcomes.append(BudgetOutcome.WARN_THRESHOLD_CROSSED)

        if not self._exceeded and self._total >= self.policy.max_cost_per_request:
            self._exceeded = True
            outcomes.append(BudgetOutcome.BUDGET_EXCEEDED)

        return outcomes or [BudgetOutcome.OK]


def build_budget_guard(budget_config) -> Optional[BudgetGuard]:
    """Build a guard from ``BudgetConfig`` or return None when disabled"""
    if not budget_config.enabled:
        return None
    return BudgetGuard(CostPolicy.from_config(budget_config))


__all__ = [
    "BudgetOutcome",
    "CostPolicy",
    "BudgetGuard",
    "build_budget_guard",
]
