import datetime as dt
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from errors import (
    BusinessRuleError,
    InactiveOwnerError,
    InvalidAmountError,
    InvalidCategoryError,
    ValidationError,
)
from periods import BudgetPeriod, Period
from values import (
    Category,
    CurrencyCode,
    Email,
    Money,
    PasswordHash,
    PersonName,
    TransactionType,
    as_percentage,
)

NEAR_LIMIT_RATIO = Decimal("0.80")
EXCEEDED_RATIO = Decimal("1.00")

CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BudgetStatus(str, Enum):
    active = "active"
    near_limit = "near_limit"
    exceeded = "exceeded"
    archived = "archived"


class GoalStatus(str, Enum):
    active = "active"
    paused = "paused"
    concluded = "concluded"
    cancelled = "cancelled"
    overdue = "overdue"


class GoalType(str, Enum):
    emergency_fund = "emergency_fund"
    travel = "travel"
    purchase = "purchase"
    investment = "investment"
    retirement = "retirement"
    education = "education"
    home = "home"
    vehicle = "vehicle"
    other = "other"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


def _require_positive(amount: Money, label: str = "Amount") -> None:
    if not amount.is_positive():
        raise InvalidAmountError(f"{label} must be greater than zero")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    password_salt: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    initial_data_loaded: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    initial_data_loaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @classmethod
    def register(cls, email: Email, name: PersonName, password: PasswordHash) -> "User":
        now = utcnow()
        return cls(
            email=email.value,
            display_name=name.value,
            password_hash=password.hash,
            password_salt=password.salt,
            is_active=True,
            initial_data_loaded=False,
            created_at=now,
            updated_at=now,
        )

    @property
    def name(self) -> PersonName:
        return PersonName(self.display_name)

    @property
    def password(self) -> PasswordHash:
        return PasswordHash(self.password_hash, self.password_salt)

    def ensure_active(self) -> None:
        if not self.is_active:
            raise InactiveOwnerError()

    def rename(self, name: PersonName) -> None:
        self.ensure_active()
        self.display_name = name.value

    def change_password(self, password: PasswordHash) -> None:
        self.ensure_active()
        self.password_hash = password.hash
        self.password_salt = password.salt

    def mark_initial_data_loaded(self) -> bool:
        self.ensure_active()
        if self.initial_data_loaded:
            return False
        self.initial_data_loaded = True
        self.initial_data_loaded_at = utcnow()
        return True

    def deactivate(self) -> None:
        self.is_active = False

    def reactivate(self) -> None:
        self.is_active = True


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.brl
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    category_name: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[TransactionType] = mapped_column(SAEnum(TransactionType), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    edit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    budget_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("budgets.id", ondelete="SET NULL")
    )
    # moved only by _touch; link bookkeeping is not an edit
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    budget: Mapped[Optional["Budget"]] = relationship("Budget")
    contributions: Mapped[list["GoalContribution"]] = relationship(
        "GoalContribution",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    @classmethod
    def record(
        cls,
        owner_id: int,
        amount: Money,
        description: str,
        category: Category,
        day: dt.date,
        *,
        today: Optional[dt.date] = None,
    ) -> "Transaction":
        description = validate_transaction_fields(amount, description, day, today)
        now = utcnow()
        return cls(
            user_id=owner_id,
            amount_cents=amount.cents,
            currency=amount.currency,
            description=description,
            category_name=category.name,
            type=category.kind,
            date=day,
            is_active=True,
            edit_count=0,
            created_at=now,
            updated_at=now,
        )

    @property
    def amount(self) -> Money:
        return Money.from_cents(self.amount_cents, self.currency)

    @property
    def category(self) -> Category:
        return Category(self.category_name, self.type)

    @property
    def signed_cents(self) -> int:
        if self.type == TransactionType.income:
            return self.amount_cents
        return -self.amount_cents

    @property
    def is_modified(self) -> bool:
        return self.edit_count > 0

    def revise(
        self,
        amount: Money,
        description: str,
        category: Category,
        day: dt.date,
        *,
        today: Optional[dt.date] = None,
    ) -> None:
        if not self.is_active:
            raise BusinessRuleError("Inactive transactions cannot be edited")
        description = validate_transaction_fields(amount, description, day, today)
        self.amount_cents = amount.cents
        self.currency = amount.currency
        self.description = description
        self.category_name = category.name
        self.type = category.kind
        self.date = day
        self.edit_count = (self.edit_count or 0) + 1
        self._touch()

    def deactivate(self) -> None:
        self.is_active = False
        self._touch()

    def reactivate(self) -> None:
        self.is_active = True
        self._touch()

    def _touch(self) -> None:
        now = utcnow()
        if self.updated_at is not None and now <= self.updated_at:
            now = self.updated_at + timedelta(microseconds=1)
        self.updated_at = now


def validate_transaction_fields(
    amount: Money, description: str, day: date, today: Optional[date]
) -> str:
    _require_positive(amount)
    clean = (description or "").strip()
    if not clean:
        raise ValidationError("Description is required", field="description")
    if len(clean) > 255:
        raise ValidationError(
            "Description cannot exceed 255 characters", field="description"
        )
    if day is None:
        raise ValidationError("Date is required", field="date")
    if day > (today or date.today()):
        raise ValidationError("Date cannot be in the future", field="date")
    return clean


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"
    __table_args__ = (
        CheckConstraint("limit_cents > 0", name="ck_budgets_limit_positive"),
        CheckConstraint("spent_cents >= 0", name="ck_budgets_spent_non_negative"),
        CheckConstraint("ends_on >= starts_on", name="ck_budgets_window"),
        Index("ix_budgets_user_category", "user_id", "category_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    category_name: Mapped[str] = mapped_column(String(50), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    spent_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.brl
    )
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    starts_on: Mapped[date] = mapped_column(Date, nullable=False)
    ends_on: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BudgetStatus] = mapped_column(
        SAEnum(BudgetStatus), default=BudgetStatus.active, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def open(
        cls,
        owner_id: int,
        category: Category,
        limit: Money,
        period: BudgetPeriod,
        starts_on: date,
    ) -> "Budget":
        if category.kind != TransactionType.expense:
            raise InvalidCategoryError("Budgets can only track expense categories")
        _require_positive(limit, "Budget limit")
        return cls(
            user_id=owner_id,
            category_name=category.name,
            limit_cents=limit.cents,
            spent_cents=0,
            currency=limit.currency,
            period=period,
            starts_on=starts_on,
            ends_on=period.end_for(starts_on),
            status=BudgetStatus.active,
        )

    @property
    def category(self) -> Category:
        return Category(self.category_name, TransactionType.expense)

    @property
    def limit(self) -> Money:
        return Money.from_cents(self.limit_cents, self.currency)

    @property
    def spent(self) -> Money:
        return Money.from_cents(self.spent_cents, self.currency)

    @property
    def remaining(self) -> Money:
        return self.limit.minus_clamped(self.spent)

    @property
    def exceeded_by(self) -> Money:
        return self.spent.minus_clamped(self.limit)

    @property
    def window(self) -> Period:
        return Period(self.period.value, self.starts_on, self.ends_on)

    @property
    def fraction(self) -> Decimal:
        return self.spent.ratio_to(self.limit)

    @property
    def percentage(self) -> Decimal:
        return as_percentage(self.fraction)

    @property
    def is_archived(self) -> bool:
        return self.status == BudgetStatus.archived

    def covers(self, day: date) -> bool:
        return self.starts_on <= day <= self.ends_on

    def add_spend(self, amount: Money) -> None:
        _require_positive(amount)
        if self.is_archived:
            raise BusinessRuleError("Archived budgets cannot receive spend")
        self.spent_cents = (self.spent + amount).cents
        self._refresh_status()

    def remove_spend(self, amount: Money) -> None:
        _require_positive(amount)
        self.spent_cents = self.spent.minus_clamped(amount).cents
        self._refresh_status()

    def update_limit(self, limit: Money) -> None:
        if self.is_archived:
            raise BusinessRuleError("Archived budgets cannot be changed")
        _require_positive(limit, "Budget limit")
        self.limit_cents = (Money.zero(self.currency) + limit).cents
        self._refresh_status()

    def archive(self) -> None:
        self.status = BudgetStatus.archived

    def _refresh_status(self) -> None:
        if self.is_archived:
            return
        fraction = self.fraction
        if fraction >= EXCEEDED_RATIO:
            self.status = BudgetStatus.exceeded
        elif fraction >= NEAR_LIMIT_RATIO:
            self.status = BudgetStatus.near_limit
        else:
            self.status = BudgetStatus.active


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"
    __table_args__ = (
        CheckConstraint("target_cents > 0", name="ck_goals_target_positive"),
        CheckConstraint("current_cents >= 0", name="ck_goals_current_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    goal_type: Mapped[GoalType] = mapped_column(
        SAEnum(GoalType), default=GoalType.other, nullable=False
    )
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.brl
    )
    deadline: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[GoalStatus] = mapped_column(
        SAEnum(GoalStatus), default=GoalStatus.active, nullable=False
    )
    achieved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def open(
        cls,
        owner_id: int,
        name: str,
        target: Money,
        deadline: date,
        goal_type: GoalType = GoalType.other,
        *,
        today: Optional[date] = None,
    ) -> "Goal":
        clean = _validate_goal_name(name)
        _require_positive(target, "Goal target")
        if deadline < (today or date.today()):
            raise ValidationError("Deadline cannot be in the past", field="deadline")
        now = utcnow()
        return cls(
            user_id=owner_id,
            name=clean,
            goal_type=goal_type,
            target_cents=target.cents,
            current_cents=0,
            currency=target.currency,
            deadline=deadline,
            status=GoalStatus.active,
            created_at=now,
            updated_at=now,
        )

    @property
    def target(self) -> Money:
        return Money.from_cents(self.target_cents, self.currency)

    @property
    def current(self) -> Money:
        return Money.from_cents(self.current_cents, self.currency)

    @property
    def remaining(self) -> Money:
        return self.target.minus_clamped(self.current)

    @property
    def is_reached(self) -> bool:
        return self.current_cents >= self.target_cents

    def add_progress(self, amount: Money) -> bool:
        """Add ``amount`` and return True only when this call first achieves the goal."""
        _require_positive(amount)
        if self.status in (GoalStatus.paused, GoalStatus.cancelled, GoalStatus.overdue):
            raise BusinessRuleError(f"Cannot add progress to a {self.status.value} goal")
        self.current_cents = (self.current + amount).cents
        return self._refresh_status()

    def remove_progress(self, amount: Money) -> None:
        _require_positive(amount)
        self.current_cents = self.current.minus_clamped(amount).cents
        if self.status == GoalStatus.concluded and not self.is_reached:
            self.status = GoalStatus.active

    def pause(self) -> None:
        if self.status != GoalStatus.active:
            raise BusinessRuleError("Only active goals can be paused")
        self.status = GoalStatus.paused

    def resume(self, *, today: Optional[date] = None) -> None:
        if self.status != GoalStatus.paused:
            raise BusinessRuleError("Only paused goals can be resumed")
        self.status = GoalStatus.active
        self.check_deadline(today)

    def cancel(self) -> None:
        if self.status in (GoalStatus.concluded, GoalStatus.cancelled):
            raise BusinessRuleError(f"Cannot cancel a {self.status.value} goal")
        self.status = GoalStatus.cancelled

    def retarget(self, target: Money) -> bool:
        if self.status == GoalStatus.cancelled:
            raise BusinessRuleError("Cancelled goals cannot be changed")
        _require_positive(target, "Goal target")
        self.target_cents = (Money.zero(self.currency) + target).cents
        if self.status == GoalStatus.concluded and not self.is_reached:
            self.status = GoalStatus.active
        return self._refresh_status()

    def postpone(self, deadline: date, *, today: Optional[date] = None) -> None:
        if self.status in (GoalStatus.concluded, GoalStatus.cancelled):
            raise BusinessRuleError(f"Cannot change the deadline of a {self.status.value} goal")
        if deadline < (today or date.today()):
            raise ValidationError("Deadline cannot be in the past", field="deadline")
        self.deadline = deadline
        if self.status == GoalStatus.overdue:
            self.status = GoalStatus.active

    def check_deadline(self, today: Optional[date] = None) -> bool:
        if self.status == GoalStatus.active and self.deadline < (today or date.today()):
            self.status = GoalStatus.overdue
            return True
        return False

    def _refresh_status(self) -> bool:
        if self.status != GoalStatus.active or not self.is_reached:
            return False
        self.status = GoalStatus.concluded
        if self.achieved_at is not None:
            return False
        self.achieved_at = utcnow()
        return True


def _validate_goal_name(name: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError("Goal name is required", field="name")
    if len(clean) > 100:
        raise ValidationError("Goal name cannot exceed 100 characters", field="name")
    return clean


class GoalContribution(Base):
    __tablename__ = "goal_contributions"
    __table_args__ = (
        UniqueConstraint("transaction_id", "goal_id", name="uq_contribution_txn_goal"),
        CheckConstraint("amount_cents > 0", name="ck_contributions_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    goal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    transaction: Mapped[Transaction] = relationship(
        "Transaction", back_populates="contributions"
    )
    goal: Mapped[Goal] = relationship("Goal")
