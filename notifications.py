import logging
from decimal import Decimal

from models import Budget, Goal
from ports import Notifier

logger = logging.getLogger(__name__)


class LoggingNotifier(Notifier):
    """Default notifier: writes each event to the application log."""

    def budget_threshold(self, budget: Budget, percentage: Decimal) -> None:
        logger.warning(
            f"budget_threshold: owner={budget.user_id} budget={budget.id} "
            f"category={budget.category_name} status={budget.status.value} "
            f"percentage={percentage} spent={budget.spent} limit={budget.limit}"
        )

    def goal_achieved(self, goal: Goal) -> None:
        logger.info(
            f"goal_achieved: owner={goal.user_id} goal={goal.id} name={goal.name!r} "
            f"current={goal.current} target={goal.target}"
        )

    def import_completed(self, result) -> None:
        logger.info(
            f"import_completed: owner={result.owner_id} file={result.filename!r} "
            f"total={result.total_rows} successes={result.successes} "
            f"failures={result.failures} duplicates={len(result.duplicates)}"
        )
