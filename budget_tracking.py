import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from models import EXCEEDED_RATIO, NEAR_LIMIT_RATIO, Budget
from values import Money

logger = logging.getLogger(__name__)

NEAR_LIMIT_PERCENT = NEAR_LIMIT_RATIO * 100
EXCEEDED_PERCENT = EXCEEDED_RATIO * 100
THRESHOLD_LEVELS = (NEAR_LIMIT_PERCENT, EXCEEDED_PERCENT)


class Operation(str, Enum):
    apply = "apply"
    revert = "revert"


@dataclass(frozen=True)
class ThresholdCrossing:
    budget: Budget
    level: Decimal
    percentage: Decimal

    @property
    def exceeded(self) -> bool:
        return self.level >= EXCEEDED_PERCENT


def threshold_level(percentage: Decimal) -> Decimal:
    reached = [level for level in THRESHOLD_LEVELS if percentage >= level]
    return max(reached) if reached else Decimal("0")


def track(budget: Budget, delta: Money, operation: Operation) -> Optional[ThresholdCrossing]:
    """Apply or revert ``delta`` on the budget's spend.

    Returns the crossing when an apply moves the budget into a higher
    threshold level. Only the highest newly reached level is reported and
    reverts never report.
    """
    before = threshold_level(budget.percentage)
    if operation == Operation.apply:
        budget.add_spend(delta)
    else:
        budget.remove_spend(delta)
    percentage = budget.percentage
    after = threshold_level(percentage)
    logger.debug(
        f"budget_tracked: budget={budget.id} op={operation.value} delta={delta} "
        f"spent={budget.spent} percentage={percentage}"
    )
    if operation == Operation.apply and after > before:
        return ThresholdCrossing(budget=budget, level=after, percentage=percentage)
    return None


def apply_spend(budget: Budget, amount: Money) -> Optional[ThresholdCrossing]:
    return track(budget, amount, Operation.apply)


def revert_spend(budget: Budget, amount: Money) -> None:
    track(budget, amount, Operation.revert)


def reevaluate(budget: Budget, before: Decimal) -> Optional[ThresholdCrossing]:
    """Report a crossing caused by a limit change, given the prior percentage."""
    percentage = budget.percentage
    after = threshold_level(percentage)
    if after > threshold_level(before):
        return ThresholdCrossing(budget=budget, level=after, percentage=percentage)
    return None
