"""Boundary contracts consumed by the use cases.

Production adapters live in ``repositories.py``, ``notifications.py`` and
``spreadsheet.py``; tests provide their own doubles for the notifier.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional

from models import Budget, Goal, GoalContribution, GoalStatus, Transaction, User
from values import TransactionType

if TYPE_CHECKING:
    from schemas import ImportResult


@dataclass
class TransactionFilters:
    start: Optional[date] = None
    end: Optional[date] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    limit: Optional[int] = None
    include_inactive: bool = False


@dataclass
class ParsedSheet:
    filename: str
    header: list[str]
    # (row number, cells) with data rows numbered from 1
    rows: list[tuple[int, list[str]]] = field(default_factory=list)


class UserRepository(ABC):
    @abstractmethod
    def get(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def exists_by_email(self, email: str) -> bool:
        ...

    @abstractmethod
    def add(self, user: User) -> User:
        ...

    @abstractmethod
    def save(self, user: User) -> User:
        ...


class TransactionRepository(ABC):
    @abstractmethod
    def get(self, transaction_id: int) -> Optional[Transaction]:
        ...

    @abstractmethod
    def find_by_owner(
        self, owner_id: int, filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        """Owner's transactions, newest date first then newest creation first."""

    @abstractmethod
    def find_near(
        self, owner_id: int, start: date, end: date
    ) -> list[Transaction]:
        """Active transactions dated within ``start``..``end`` inclusive."""

    @abstractmethod
    def find_inactive_before(
        self, owner_id: int, cutoff: datetime
    ) -> list[Transaction]:
        ...

    @abstractmethod
    def totals_by_type(
        self, owner_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[TransactionType, int]:
        """Sum of active amounts in cents per transaction type."""

    @abstractmethod
    def add(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    def save(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    def delete(self, transaction: Transaction) -> None:
        ...


class BudgetRepository(ABC):
    @abstractmethod
    def get(self, budget_id: int) -> Optional[Budget]:
        ...

    @abstractmethod
    def find_by_owner(
        self, owner_id: int, *, include_archived: bool = False
    ) -> list[Budget]:
        ...

    @abstractmethod
    def find_covering(
        self, owner_id: int, category_name: str, day: date
    ) -> Optional[Budget]:
        """Non-archived budget of the category whose window contains ``day``."""

    @abstractmethod
    def find_overlapping(
        self, owner_id: int, category_name: str, start: date, end: date
    ) -> list[Budget]:
        ...

    @abstractmethod
    def add(self, budget: Budget) -> Budget:
        ...

    @abstractmethod
    def save(self, budget: Budget) -> Budget:
        ...


class GoalRepository(ABC):
    @abstractmethod
    def get(self, goal_id: int) -> Optional[Goal]:
        ...

    @abstractmethod
    def find_by_owner(
        self, owner_id: int, statuses: Optional[Iterable[GoalStatus]] = None
    ) -> list[Goal]:
        ...

    @abstractmethod
    def add(self, goal: Goal) -> Goal:
        ...

    @abstractmethod
    def save(self, goal: Goal) -> Goal:
        ...

    @abstractmethod
    def contributions_for(self, transaction: Transaction) -> list[GoalContribution]:
        ...

    @abstractmethod
    def add_contribution(
        self, transaction: Transaction, goal: Goal, amount_cents: int
    ) -> GoalContribution:
        ...

    @abstractmethod
    def remove_contributions(self, transaction: Transaction) -> None:
        ...


class Notifier(ABC):
    """Fire-and-forget signals. Return values are ignored by callers."""

    @abstractmethod
    def budget_threshold(self, budget: Budget, percentage: Decimal) -> None:
        ...

    @abstractmethod
    def goal_achieved(self, goal: Goal) -> None:
        ...

    @abstractmethod
    def import_completed(self, result: "ImportResult") -> None:
        ...


class SpreadsheetParser(ABC):
    @abstractmethod
    def parse(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> ParsedSheet:
        """Raise UnsupportedFormatError, EmptyFileError or SpreadsheetParseError."""
