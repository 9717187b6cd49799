import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from config import Settings
from models import Goal, GoalStatus, Transaction
from values import (
    Money,
    TransactionType,
    as_percentage,
    normalize_category_name,
    ratio,
    strip_accents,
)

logger = logging.getLogger(__name__)

DISPLAY_CAP = Decimal("100.00")


def add_progress(goal: Goal, delta: Money) -> bool:
    """Returns True only when this call concludes the goal for the first time."""
    achieved = goal.add_progress(delta)
    logger.debug(
        f"goal_progress: goal={goal.id} delta={delta} current={goal.current} "
        f"status={goal.status.value} achieved={achieved}"
    )
    return achieved


def remove_progress(goal: Goal, delta: Money) -> None:
    goal.remove_progress(delta)


def percentage(goal: Goal) -> Decimal:
    return as_percentage(ratio(goal.current.amount, goal.target.amount))


def display_percentage(goal: Goal) -> Decimal:
    return min(percentage(goal), DISPLAY_CAP)


def estimate_completion(goal: Goal, today: Optional[date] = None) -> date:
    """Project the completion date from the average daily contribution rate."""
    today = today or date.today()
    if goal.status == GoalStatus.concluded:
        return goal.achieved_at.date() if goal.achieved_at else today
    if goal.current.is_zero() or goal.status != GoalStatus.active:
        return goal.deadline
    elapsed = (today - goal.created_at.date()).days
    if elapsed <= 0:
        return goal.deadline
    daily_rate = ratio(goal.current.amount, Decimal(elapsed))
    if daily_rate <= 0:
        return goal.deadline
    days_needed = math.ceil(goal.remaining.amount / daily_rate)
    if days_needed > (date.max - today).days:
        return date.max
    return max(today + timedelta(days=days_needed), today)


def _fold(text: str) -> str:
    return strip_accents(text or "").lower()


def contributes_to_goals(transaction: Transaction, settings: Settings) -> bool:
    if transaction.type != TransactionType.income:
        return False
    categories = {normalize_category_name(name) for name in settings.goal_categories}
    if transaction.category_name in categories:
        return True
    description = _fold(transaction.description)
    return any(_fold(keyword) in description for keyword in settings.goal_keywords)


def matching_goals(transaction: Transaction, goals: Iterable[Goal]) -> list[Goal]:
    """Active goals named in the description, or every active goal if none is named."""
    active = [goal for goal in goals if goal.status == GoalStatus.active]
    description = _fold(transaction.description)
    named = [goal for goal in active if _fold(goal.name) in description]
    return named or active
