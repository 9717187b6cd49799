import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from goal_progress import display_percentage, estimate_completion, percentage
from models import Budget, BudgetStatus, Goal, GoalStatus, GoalType, Transaction
from periods import BudgetPeriod
from values import CurrencyCode, TransactionType


class RegisterUserIn(BaseModel):
    email: str = Field(..., max_length=320)
    name: str
    password: str


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal
    description: str
    category: str
    type: TransactionType
    date: dt.date
    currency: Optional[CurrencyCode] = None


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str
    limit: Decimal
    period: BudgetPeriod = BudgetPeriod.monthly
    starts_on: Optional[date] = None
    currency: Optional[CurrencyCode] = None


class GoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    target: Decimal
    deadline: date
    goal_type: GoalType = GoalType.other
    currency: Optional[CurrencyCode] = None


class ImportIn(BaseModel):
    filename: str
    content: bytes
    content_type: Optional[str] = None
    skip_duplicates: bool = False
    skip_rows: list[int] = Field(default_factory=list)


class TransactionOut(BaseModel):
    id: int
    amount: Decimal
    currency: CurrencyCode
    description: str
    category: str
    type: TransactionType
    date: dt.date
    created_at: datetime
    updated_at: datetime
    is_active: bool
    is_modified: bool
    budget_id: Optional[int] = None

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionOut":
        return cls(
            id=txn.id,
            amount=txn.amount.amount,
            currency=txn.currency,
            description=txn.description,
            category=txn.category_name,
            type=txn.type,
            date=txn.date,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
            is_active=txn.is_active,
            is_modified=txn.is_modified,
            budget_id=txn.budget_id,
        )


class BudgetStatusOut(BaseModel):
    id: int
    category: str
    period: BudgetPeriod
    starts_on: date
    ends_on: date
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    exceeded_by: Decimal
    percentage: Decimal
    status: BudgetStatus

    @classmethod
    def from_model(cls, budget: Budget) -> "BudgetStatusOut":
        return cls(
            id=budget.id,
            category=budget.category_name,
            period=budget.period,
            starts_on=budget.starts_on,
            ends_on=budget.ends_on,
            limit=budget.limit.amount,
            spent=budget.spent.amount,
            remaining=budget.remaining.amount,
            exceeded_by=budget.exceeded_by.amount,
            percentage=budget.percentage,
            status=budget.status,
        )


class GoalProgressOut(BaseModel):
    id: int
    name: str
    goal_type: GoalType
    target: Decimal
    current: Decimal
    remaining: Decimal
    percentage: Decimal
    display_percentage: Decimal
    deadline: date
    projected_completion: date
    status: GoalStatus

    @classmethod
    def from_model(cls, goal: Goal, *, today: Optional[date] = None) -> "GoalProgressOut":
        return cls(
            id=goal.id,
            name=goal.name,
            goal_type=goal.goal_type,
            target=goal.target.amount,
            current=goal.current.amount,
            remaining=goal.remaining.amount,
            percentage=percentage(goal),
            display_percentage=display_percentage(goal),
            deadline=goal.deadline,
            projected_completion=estimate_completion(goal, today),
            status=goal.status,
        )


class DashboardOut(BaseModel):
    owner_id: int
    currency: CurrencyCode
    balance: Decimal = Decimal("0.00")
    monthly_income: Decimal = Decimal("0.00")
    monthly_expense: Decimal = Decimal("0.00")
    monthly_balance: Decimal = Decimal("0.00")
    month_start: date
    month_end: date
    budgets: list[BudgetStatusOut] = Field(default_factory=list)
    goals: list[GoalProgressOut] = Field(default_factory=list)
    recent_transactions: list[TransactionOut] = Field(default_factory=list)


class ImportRowError(BaseModel):
    row: int
    field: Optional[str] = None
    message: str


class DuplicateFlag(BaseModel):
    row: int
    score: float
    reason: str
    existing_transaction_id: Optional[int] = None
    duplicate_of_row: Optional[int] = None


class CandidateRow(BaseModel):
    row: int
    date: dt.date
    amount: Decimal
    description: str
    category: str
    type: TransactionType


class ImportPreview(BaseModel):
    filename: str
    total_rows: int
    candidates: list[CandidateRow] = Field(default_factory=list)
    errors: list[ImportRowError] = Field(default_factory=list)
    duplicates: list[DuplicateFlag] = Field(default_factory=list)


class ImportResult(BaseModel):
    owner_id: int
    filename: str
    stage: str
    total_rows: int = 0
    successes: int = 0
    failures: int = 0
    skipped: int = 0
    duplicates: list[DuplicateFlag] = Field(default_factory=list)
    errors: list[ImportRowError] = Field(default_factory=list)
    transactions: list[TransactionOut] = Field(default_factory=list)
    initial_data_loaded: bool = False
