"""SQLAlchemy implementations of the repository ports."""

from __future__ import annotations

import functools
import logging
from datetime import date, datetime
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from errors import ConcurrencyConflictError, InfrastructureError
from models import (
    Budget,
    BudgetStatus,
    Goal,
    GoalContribution,
    GoalStatus,
    Transaction,
    User,
)
from ports import (
    BudgetRepository,
    GoalRepository,
    TransactionFilters,
    TransactionRepository,
    UserRepository,
)
from values import TransactionType

logger = logging.getLogger(__name__)

T = TypeVar("T")


def translate_errors(func_: Callable[..., T]) -> Callable[..., T]:
    @functools.wraps(func_)
    def wrapper(*args, **kwargs):
        try:
            return func_(*args, **kwargs)
        except StaleDataError as exc:
            logger.warning(f"stale_write: op={func_.__qualname__} error={exc}")
            raise ConcurrencyConflictError() from exc
        except (SQLAlchemyError, OverflowError) as exc:
            logger.error(f"storage_failure: op={func_.__qualname__} error={exc}")
            raise InfrastructureError() from exc

    return wrapper


class SqlUserRepository(UserRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    @translate_errors
    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    @translate_errors
    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email.lower()))

    @translate_errors
    def exists_by_email(self, email: str) -> bool:
        count = self.session.execute(
            select(func.count(User.id)).where(User.email == email.lower())
        ).scalar_one()
        return (count or 0) > 0

    @translate_errors
    def add(self, user: User) -> User:
        self.session.add(user)
        self.session.flush()
        return user

    @translate_errors
    def save(self, user: User) -> User:
        self.session.flush()
        return user


class SqlTransactionRepository(TransactionRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    @translate_errors
    def get(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.get(Transaction, transaction_id)

    @translate_errors
    def find_by_owner(
        self, owner_id: int, filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == owner_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        )
        if not filters.include_inactive:
            stmt = stmt.where(Transaction.is_active.is_(True))
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.category:
            stmt = stmt.where(Transaction.category_name == filters.category)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def find_near(self, owner_id: int, start: date, end: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == owner_id,
                Transaction.is_active.is_(True),
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def find_inactive_before(self, owner_id: int, cutoff: datetime) -> list[Transaction]:
        stmt = select(Transaction).where(
            Transaction.user_id == owner_id,
            Transaction.is_active.is_(False),
            Transaction.updated_at < cutoff,
        )
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def totals_by_type(
        self, owner_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[TransactionType, int]:
        stmt = (
            select(Transaction.type, func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(Transaction.user_id == owner_id, Transaction.is_active.is_(True))
            .group_by(Transaction.type)
        )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        totals = {TransactionType.income: 0, TransactionType.expense: 0}
        for txn_type, total in self.session.execute(stmt):
            totals[txn_type] = int(total or 0)
        return totals

    @translate_errors
    def add(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        self.session.flush()
        return transaction

    @translate_errors
    def save(self, transaction: Transaction) -> Transaction:
        self.session.flush()
        return transaction

    @translate_errors
    def delete(self, transaction: Transaction) -> None:
        self.session.delete(transaction)
        self.session.flush()


class SqlBudgetRepository(BudgetRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    @translate_errors
    def get(self, budget_id: int) -> Optional[Budget]:
        return self.session.get(Budget, budget_id)

    @translate_errors
    def find_by_owner(
        self, owner_id: int, *, include_archived: bool = False
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == owner_id)
            .order_by(Budget.starts_on.desc(), Budget.category_name.asc(), Budget.id.asc())
        )
        if not include_archived:
            stmt = stmt.where(Budget.status != BudgetStatus.archived)
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def find_covering(
        self, owner_id: int, category_name: str, day: date
    ) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == owner_id,
                Budget.category_name == category_name,
                Budget.status != BudgetStatus.archived,
                Budget.starts_on <= day,
                Budget.ends_on >= day,
            )
            .order_by(Budget.starts_on.desc(), Budget.id.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    @translate_errors
    def find_overlapping(
        self, owner_id: int, category_name: str, start: date, end: date
    ) -> list[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == owner_id,
            Budget.category_name == category_name,
            Budget.status != BudgetStatus.archived,
            Budget.starts_on <= end,
            Budget.ends_on >= start,
        )
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def add(self, budget: Budget) -> Budget:
        self.session.add(budget)
        self.session.flush()
        return budget

    @translate_errors
    def save(self, budget: Budget) -> Budget:
        self.session.flush()
        return budget


class SqlGoalRepository(GoalRepository):
    def __init__(self, session: Session) -> None:
        self.session = session

    @translate_errors
    def get(self, goal_id: int) -> Optional[Goal]:
        return self.session.get(Goal, goal_id)

    @translate_errors
    def find_by_owner(
        self, owner_id: int, statuses: Optional[Iterable[GoalStatus]] = None
    ) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == owner_id)
            .order_by(Goal.deadline.asc(), Goal.id.asc())
        )
        if statuses is not None:
            stmt = stmt.where(Goal.status.in_(list(statuses)))
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def add(self, goal: Goal) -> Goal:
        self.session.add(goal)
        self.session.flush()
        return goal

    @translate_errors
    def save(self, goal: Goal) -> Goal:
        self.session.flush()
        return goal

    @translate_errors
    def contributions_for(self, transaction: Transaction) -> list[GoalContribution]:
        stmt = (
            select(GoalContribution)
            .where(GoalContribution.transaction_id == transaction.id)
            .order_by(GoalContribution.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    @translate_errors
    def add_contribution(
        self, transaction: Transaction, goal: Goal, amount_cents: int
    ) -> GoalContribution:
        contribution = GoalContribution(
            transaction_id=transaction.id, goal_id=goal.id, amount_cents=amount_cents
        )
        self.session.add(contribution)
        self.session.flush()
        return contribution

    @translate_errors
    def remove_contributions(self, transaction: Transaction) -> None:
        self.session.execute(
            delete(GoalContribution).where(
                GoalContribution.transaction_id == transaction.id
            )
        )
        self.session.expire(transaction, ["contributions"])
