"""Pytest fixtures shared by the domain tests."""

from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from config import Settings
from database import Base
from models import Budget, Goal, User
from ports import Notifier
from schemas import RegisterUserIn
from services import UserService


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.budget_events: list[tuple[int, Decimal]] = []
        self.goal_events: list[int] = []
        self.imports: list = []

    def budget_threshold(self, budget: Budget, percentage: Decimal) -> None:
        self.budget_events.append((budget.id, percentage))

    def goal_achieved(self, goal: Goal) -> None:
        self.goal_events.append(goal.id)

    def import_completed(self, result) -> None:
        self.imports.append(result)


@pytest.fixture
def session() -> Iterator[Session]:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite:///:memory:")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def register(session: Session, settings: Settings, email: str, name: str) -> User:
    return UserService(session, settings=settings).register(
        RegisterUserIn(email=email, name=name, password="Str0ng!Pass")
    )


@pytest.fixture
def owner(session: Session, settings: Settings) -> User:
    return register(session, settings, "ana@example.com", "Ana Souza")


@pytest.fixture
def other_owner(session: Session, settings: Settings) -> User:
    return register(session, settings, "bruno@example.com", "Bruno Lima")
