from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from budget_tracking import apply_spend, reevaluate, revert_spend
from config import Settings, get_settings
from errors import (
    BusinessRuleError,
    ConcurrencyConflictError,
    DuplicateBudgetError,
    EmailAlreadyRegisteredError,
    InfrastructureError,
    NotFoundError,
    OwnershipError,
)
from goal_progress import (
    add_progress,
    contributes_to_goals,
    matching_goals,
    remove_progress,
)
from models import (
    Budget,
    Goal,
    GoalStatus,
    Transaction,
    User,
    utcnow,
    validate_transaction_fields,
)
from notifications import LoggingNotifier
from periods import Period, month_bounds, resolve_period
from ports import (
    BudgetRepository,
    GoalRepository,
    Notifier,
    TransactionFilters,
    TransactionRepository,
    UserRepository,
)
from repositories import (
    SqlBudgetRepository,
    SqlGoalRepository,
    SqlTransactionRepository,
    SqlUserRepository,
)
from schemas import (
    BudgetIn,
    BudgetStatusOut,
    DashboardOut,
    GoalIn,
    GoalProgressOut,
    RegisterUserIn,
    TransactionIn,
    TransactionOut,
)
from values import (
    CENT,
    Category,
    CurrencyCode,
    Email,
    Money,
    PasswordHash,
    PersonName,
    TransactionType,
    normalize_category_name,
)

logger = logging.getLogger(__name__)


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


class _UnitOfWork:
    """Shared commit/rollback handling and the post-commit notification outbox."""

    def __init__(
        self,
        session: Session,
        *,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        users: Optional[UserRepository] = None,
        transactions: Optional[TransactionRepository] = None,
        budgets: Optional[BudgetRepository] = None,
        goals: Optional[GoalRepository] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.notifier = notifier or LoggingNotifier()
        self.users = users or SqlUserRepository(session)
        self.transactions = transactions or SqlTransactionRepository(session)
        self.budgets = budgets or SqlBudgetRepository(session)
        self.goals = goals or SqlGoalRepository(session)
        self._outbox: list[Callable[[], None]] = []

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            self._outbox.clear()
            if isinstance(exc, StaleDataError):
                raise ConcurrencyConflictError() from exc
            if isinstance(exc, (SQLAlchemyError, OverflowError)):
                logger.error(f"commit_failed: error={exc}")
                raise InfrastructureError() from exc
            raise
        self._dispatch()

    def _notify(self, send: Callable[[], None]) -> None:
        self._outbox.append(send)

    def _dispatch(self) -> None:
        pending, self._outbox = self._outbox, []
        for send in pending:
            try:
                send()
            except Exception:
                logger.exception("notification_failed")

    def _money(self, amount: Decimal, currency: Optional[CurrencyCode] = None) -> Money:
        return Money(amount, currency or self.settings.currency)


class OwnerScopedService(_UnitOfWork):
    def __init__(self, session: Session, owner_id: int, **kwargs) -> None:
        super().__init__(session, **kwargs)
        self.owner_id = owner_id

    def _owner(self, *, require_active: bool = True) -> User:
        user = self.users.get(self.owner_id)
        if not user:
            raise NotFoundError("Owner not found")
        if require_active:
            user.ensure_active()
        return user

    def _owned(self, obj, label: str):
        if obj is None:
            raise NotFoundError(f"{label} not found")
        if obj.user_id != self.owner_id:
            raise OwnershipError(f"{label} not found")
        return obj


class UserService(_UnitOfWork):
    def register(self, data: RegisterUserIn) -> User:
        email = Email(data.email)
        name = PersonName(data.name)
        password = PasswordHash.create(data.password)
        with self._unit_of_work():
            if self.users.exists_by_email(email.value):
                raise EmailAlreadyRegisteredError()
            user = self.users.add(User.register(email, name, password))
        logger.info(f"user_registered: id={user.id}")
        return user

    def get(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.users.get_by_email(Email(email).value)
        if not user or not user.is_active or not user.password.verify(password):
            raise NotFoundError("Invalid credentials")
        return user

    def deactivate(self, user_id: int) -> User:
        with self._unit_of_work():
            user = self.get(user_id)
            user.deactivate()
            self.users.save(user)
        logger.info(f"user_deactivated: id={user_id}")
        return user

    def reactivate(self, user_id: int) -> User:
        with self._unit_of_work():
            user = self.get(user_id)
            user.reactivate()
            self.users.save(user)
        logger.info(f"user_reactivated: id={user_id}")
        return user

    def mark_initial_data_loaded(self, user_id: int) -> bool:
        with self._unit_of_work():
            user = self.get(user_id)
            changed = user.mark_initial_data_loaded()
            self.users.save(user)
        return changed


class TransactionService(OwnerScopedService):
    def create(self, data: TransactionIn) -> Transaction:
        with self._unit_of_work():
            txn = self._create(data)
        logger.info(
            f"transaction_created: owner={self.owner_id} id={txn.id} "
            f"type={txn.type.value} category={txn.category_name} amount={txn.amount}"
        )
        return txn

    def _create(self, data: TransactionIn) -> Transaction:
        self._owner()
        amount = self._money(data.amount, data.currency)
        category = Category.resolve(data.category, data.type)
        txn = Transaction.record(self.owner_id, amount, data.description, category, data.date)
        self.transactions.add(txn)
        self._apply_impact(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        return self._owned(self.transactions.get(transaction_id), "Transaction")

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        with self._unit_of_work():
            self._owner()
            txn = self.get(transaction_id)
            if not txn.is_active:
                raise BusinessRuleError("Inactive transactions cannot be edited")
            amount = self._money(data.amount, data.currency)
            category = Category.resolve(data.category, data.type)
            validate_transaction_fields(amount, data.description, data.date, None)
            self._revert_impact(txn)
            txn.revise(amount, data.description, category, data.date)
            self._apply_impact(txn)
        logger.info(
            f"transaction_updated: owner={self.owner_id} id={txn.id} "
            f"edits={txn.edit_count} amount={txn.amount}"
        )
        return txn

    def soft_delete(self, transaction_id: int) -> Transaction:
        with self._unit_of_work():
            self._owner()
            txn = self.get(transaction_id)
            if not txn.is_active:
                return txn
            self._revert_impact(txn)
            txn.deactivate()
            self.transactions.save(txn)
        logger.info(f"transaction_deleted: owner={self.owner_id} id={txn.id}")
        return txn

    def reactivate(self, transaction_id: int) -> Transaction:
        with self._unit_of_work():
            self._owner()
            txn = self.get(transaction_id)
            if txn.is_active:
                return txn
            txn.reactivate()
            self._apply_impact(txn)
        logger.info(f"transaction_reactivated: owner={self.owner_id} id={txn.id}")
        return txn

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        period: Optional[Period] = None,
    ) -> list[Transaction]:
        self._owner(require_active=False)
        filters = replace(filters or TransactionFilters())
        if period is not None:
            filters.start, filters.end = period.start, period.end
        if filters.category:
            filters.category = normalize_category_name(filters.category)
        return self.transactions.find_by_owner(self.owner_id, filters)

    def list_for(
        self, period_slug: Optional[str], start: Optional[str] = None, end: Optional[str] = None
    ) -> list[Transaction]:
        return self.list(period=resolve_period(period_slug, start, end))

    def recent(self, limit: Optional[int] = None) -> list[Transaction]:
        if limit is None:
            limit = self.settings.recent_limit
        return self.list(TransactionFilters(limit=limit))

    def deleted(self) -> list[Transaction]:
        rows = self.list(TransactionFilters(include_inactive=True))
        return [txn for txn in rows if not txn.is_active]

    def purge_inactive(self, older_than_days: int = 30) -> int:
        """Hard-delete inactive transactions untouched for ``older_than_days``."""
        cutoff = utcnow() - timedelta(days=older_than_days)
        with self._unit_of_work():
            self._owner(require_active=False)
            stale = self.transactions.find_inactive_before(self.owner_id, cutoff)
            for txn in stale:
                self.goals.remove_contributions(txn)
                self.transactions.delete(txn)
        logger.info(f"transactions_purged: owner={self.owner_id} count={len(stale)}")
        return len(stale)

    def _apply_impact(self, txn: Transaction) -> None:
        if txn.type == TransactionType.expense:
            self._apply_budget(txn)
        elif contributes_to_goals(txn, self.settings):
            self._apply_goals(txn)
        self.transactions.save(txn)

    def _apply_budget(self, txn: Transaction) -> None:
        budget = self.budgets.find_covering(self.owner_id, txn.category_name, txn.date)
        if budget is None or budget.currency != txn.currency:
            txn.budget_id = None
            return
        crossing = apply_spend(budget, txn.amount)
        self.budgets.save(budget)
        txn.budget_id = budget.id
        if crossing:
            self._notify(
                lambda b=budget, p=crossing.percentage: self.notifier.budget_threshold(b, p)
            )

    def _apply_goals(self, txn: Transaction) -> None:
        candidates = self.goals.find_by_owner(self.owner_id, [GoalStatus.active])
        for goal in matching_goals(txn, candidates):
            if goal.currency != txn.currency:
                continue
            achieved = add_progress(goal, txn.amount)
            self.goals.save(goal)
            self.goals.add_contribution(txn, goal, txn.amount_cents)
            if achieved:
                self._notify(lambda g=goal: self.notifier.goal_achieved(g))

    def _revert_impact(self, txn: Transaction) -> None:
        if txn.budget_id is not None:
            budget = self.budgets.get(txn.budget_id)
            if budget is not None:
                revert_spend(budget, txn.amount)
                self.budgets.save(budget)
            txn.budget_id = None
        for contribution in self.goals.contributions_for(txn):
            goal = self.goals.get(contribution.goal_id)
            if goal is None:
                continue
            remove_progress(goal, Money.from_cents(contribution.amount_cents, goal.currency))
            self.goals.save(goal)
        self.goals.remove_contributions(txn)
        self.transactions.save(txn)


class BudgetService(OwnerScopedService):
    def create(self, data: BudgetIn, *, today: Optional[date] = None) -> Budget:
        with self._unit_of_work():
            self._owner()
            category = Category.resolve(data.category, TransactionType.expense)
            limit = self._money(data.limit, data.currency)
            starts_on = data.starts_on or month_bounds(today or date.today()).start
            window = data.period.window(starts_on)
            if self.budgets.find_overlapping(
                self.owner_id, category.name, window.start, window.end
            ):
                raise DuplicateBudgetError()
            budget = self.budgets.add(
                Budget.open(self.owner_id, category, limit, data.period, starts_on)
            )
        logger.info(
            f"budget_created: owner={self.owner_id} id={budget.id} "
            f"category={budget.category_name} limit={budget.limit} "
            f"window={budget.starts_on}..{budget.ends_on}"
        )
        return budget

    def get(self, budget_id: int) -> Budget:
        return self._owned(self.budgets.get(budget_id), "Budget")

    def list(self, include_archived: bool = False) -> list[Budget]:
        self._owner(require_active=False)
        return self.budgets.find_by_owner(self.owner_id, include_archived=include_archived)

    def statuses(self) -> list[BudgetStatusOut]:
        return [BudgetStatusOut.from_model(budget) for budget in self.list()]

    def update_limit(self, budget_id: int, limit: Decimal) -> Budget:
        with self._unit_of_work():
            self._owner()
            budget = self.get(budget_id)
            before = budget.percentage
            budget.update_limit(self._money(limit, budget.currency))
            self.budgets.save(budget)
            crossing = reevaluate(budget, before)
            if crossing:
                self._notify(
                    lambda b=budget, p=crossing.percentage: self.notifier.budget_threshold(b, p)
                )
        logger.info(f"budget_limit_updated: owner={self.owner_id} id={budget_id} limit={budget.limit}")
        return budget

    def archive(self, budget_id: int) -> Budget:
        with self._unit_of_work():
            self._owner()
            budget = self.get(budget_id)
            budget.archive()
            self.budgets.save(budget)
        logger.info(f"budget_archived: owner={self.owner_id} id={budget_id}")
        return budget


class GoalService(OwnerScopedService):
    def create(self, data: GoalIn, *, today: Optional[date] = None) -> Goal:
        with self._unit_of_work():
            self._owner()
            target = self._money(data.target, data.currency)
            goal = self.goals.add(
                Goal.open(
                    self.owner_id, data.name, target, data.deadline, data.goal_type, today=today
                )
            )
        logger.info(
            f"goal_created: owner={self.owner_id} id={goal.id} target={goal.target} "
            f"deadline={goal.deadline}"
        )
        return goal

    def get(self, goal_id: int) -> Goal:
        return self._owned(self.goals.get(goal_id), "Goal")

    def list(self, statuses: Optional[Iterable[GoalStatus]] = None) -> list[Goal]:
        self._owner(require_active=False)
        return self.goals.find_by_owner(self.owner_id, statuses)

    def progress(self, goal_id: int, *, today: Optional[date] = None) -> GoalProgressOut:
        return GoalProgressOut.from_model(self.get(goal_id), today=today)

    def add_progress(self, goal_id: int, amount: Decimal) -> Goal:
        with self._unit_of_work():
            self._owner()
            goal = self.get(goal_id)
            achieved = add_progress(goal, self._money(amount, goal.currency))
            self.goals.save(goal)
            if achieved:
                self._notify(lambda g=goal: self.notifier.goal_achieved(g))
        return goal

    def retarget(self, goal_id: int, target: Decimal) -> Goal:
        with self._unit_of_work():
            self._owner()
            goal = self.get(goal_id)
            achieved = goal.retarget(self._money(target, goal.currency))
            self.goals.save(goal)
            if achieved:
                self._notify(lambda g=goal: self.notifier.goal_achieved(g))
        return goal

    def postpone(self, goal_id: int, deadline: date, *, today: Optional[date] = None) -> Goal:
        return self._mutate(goal_id, lambda goal: goal.postpone(deadline, today=today))

    def pause(self, goal_id: int) -> Goal:
        return self._mutate(goal_id, Goal.pause)

    def resume(self, goal_id: int, *, today: Optional[date] = None) -> Goal:
        return self._mutate(goal_id, lambda goal: goal.resume(today=today))

    def cancel(self, goal_id: int) -> Goal:
        return self._mutate(goal_id, Goal.cancel)

    def refresh_deadlines(self, today: Optional[date] = None) -> list[Goal]:
        with self._unit_of_work():
            self._owner(require_active=False)
            overdue = [
                goal
                for goal in self.goals.find_by_owner(self.owner_id, [GoalStatus.active])
                if goal.check_deadline(today)
            ]
            for goal in overdue:
                self.goals.save(goal)
        if overdue:
            logger.info(f"goals_overdue: owner={self.owner_id} ids={[g.id for g in overdue]}")
        return overdue

    def _mutate(self, goal_id: int, action: Callable[[Goal], None]) -> Goal:
        with self._unit_of_work():
            self._owner()
            goal = self.get(goal_id)
            action(goal)
            self.goals.save(goal)
        logger.info(f"goal_updated: owner={self.owner_id} id={goal_id} status={goal.status.value}")
        return goal


class DashboardService(OwnerScopedService):
    def summary(self, today: Optional[date] = None) -> DashboardOut:
        today = today or date.today()
        owner = self._owner(require_active=False)
        month = resolve_period("this_month", None, None, today=today)
        currency = self.settings.currency

        overall = self.transactions.totals_by_type(owner.id)
        monthly = self.transactions.totals_by_type(owner.id, month.start, month.end)
        balance = overall[TransactionType.income] - overall[TransactionType.expense]
        monthly_income = monthly[TransactionType.income]
        monthly_expense = monthly[TransactionType.expense]

        budgets = self.budgets.find_by_owner(owner.id)
        goals = self.goals.find_by_owner(owner.id, [GoalStatus.active])
        recent = self.transactions.find_by_owner(
            owner.id, TransactionFilters(limit=self.settings.recent_limit)
        )
        return DashboardOut(
            owner_id=owner.id,
            currency=currency,
            balance=cents_to_amount(balance),
            monthly_income=cents_to_amount(monthly_income),
            monthly_expense=cents_to_amount(monthly_expense),
            monthly_balance=cents_to_amount(monthly_income - monthly_expense),
            month_start=month.start,
            month_end=month.end,
            budgets=[BudgetStatusOut.from_model(budget) for budget in budgets],
            goals=[GoalProgressOut.from_model(goal, today=today) for goal in goals],
            recent_transactions=[TransactionOut.from_model(txn) for txn in recent],
        )
