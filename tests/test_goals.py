from datetime import date, timedelta
from decimal import Decimal

import pytest

from errors import BusinessRuleError, OwnershipError, ValidationError
from goal_progress import (
    contributes_to_goals,
    display_percentage,
    estimate_completion,
    matching_goals,
    percentage,
)
from models import Goal, GoalStatus, Transaction, utcnow
from schemas import GoalIn, TransactionIn
from services import DashboardService, GoalService, TransactionService
from values import Category, Money, TransactionType

FAR_DEADLINE = date.today() + timedelta(days=365)


def _goal_in(name: str = "Reserva de emergencia", target: str = "1000.00") -> GoalIn:
    return GoalIn(name=name, target=Decimal(target), deadline=FAR_DEADLINE)


def _income(amount: str, description: str, category: str = "SALARIO") -> TransactionIn:
    return TransactionIn(
        amount=Decimal(amount),
        description=description,
        category=category,
        type=TransactionType.income,
        date=date.today(),
    )


def test_goal_achieved_once_and_percentage_capped(session, owner, notifier, settings) -> None:
    goals = GoalService(session, owner.id, notifier=notifier, settings=settings)
    goal = goals.create(_goal_in())

    goals.add_progress(goal.id, Decimal("950.00"))
    assert notifier.goal_events == []

    goal = goals.add_progress(goal.id, Decimal("100.00"))
    assert goal.current == Money("1050.00")
    assert goal.status == GoalStatus.concluded
    progress = goals.progress(goal.id)
    assert progress.percentage == Decimal("105.00")
    assert progress.display_percentage == Decimal("100.00")
    assert notifier.goal_events == [goal.id]

    goals.add_progress(goal.id, Decimal("10.00"))
    assert notifier.goal_events == [goal.id]


def test_income_with_keyword_feeds_goal_and_revert_restores(
    session, owner, notifier, settings
) -> None:
    goals = GoalService(session, owner.id, notifier=notifier, settings=settings)
    txns = TransactionService(session, owner.id, notifier=notifier, settings=settings)
    goal = goals.create(_goal_in())

    txn = txns.create(_income("300.00", "Reserva mensal"))
    assert goals.get(goal.id).current == Money("300.00")

    txns.update(txn.id, _income("200.00", "Reserva mensal"))
    assert goals.get(goal.id).current == Money("200.00")

    txns.soft_delete(txn.id)
    assert goals.get(goal.id).current.is_zero()
    assert notifier.goal_events == []


def test_plain_income_and_expenses_do_not_contribute(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    txns = TransactionService(session, owner.id, settings=settings)
    goal = goals.create(_goal_in())

    txns.create(_income("5000.00", "Salario outubro"))
    txns.create(
        TransactionIn(
            amount=Decimal("50.00"),
            description="Meta de gastos do mercado",
            category="ALIMENTACAO",
            type=TransactionType.expense,
            date=date.today(),
        )
    )
    assert goals.get(goal.id).current.is_zero()


def test_investment_income_contributes_to_named_goal(session, owner, notifier, settings) -> None:
    goals = GoalService(session, owner.id, notifier=notifier, settings=settings)
    txns = TransactionService(session, owner.id, notifier=notifier, settings=settings)
    trip = goals.create(_goal_in("Viagem", "500.00"))
    car = goals.create(_goal_in("Carro", "20000.00"))

    txns.create(_income("500.00", "Aporte viagem", category="INVESTIMENTOS"))
    assert goals.get(trip.id).status == GoalStatus.concluded
    assert goals.get(car.id).current.is_zero()
    assert notifier.goal_events == [trip.id]


def test_contribution_heuristics(settings) -> None:
    salary = Transaction.record(
        1,
        Money("100.00"),
        "Poupança do mês",
        Category("SALARIO", TransactionType.income),
        date.today(),
    )
    assert contributes_to_goals(salary, settings)

    freelance = Transaction.record(
        1, Money("100.00"), "Projeto", Category("FREELANCE", TransactionType.income), date.today()
    )
    assert not contributes_to_goals(freelance, settings)

    trip = Goal.open(1, "Viagem", Money("100.00"), FAR_DEADLINE)
    house = Goal.open(1, "Casa", Money("100.00"), FAR_DEADLINE)
    paused = Goal.open(1, "Moto", Money("100.00"), FAR_DEADLINE)
    paused.pause()
    assert matching_goals(salary, [trip, house, paused]) == [trip, house]

    named = Transaction.record(
        1, Money("10.00"), "Reserva viagem", Category("SALARIO", TransactionType.income), date.today()
    )
    assert matching_goals(named, [trip, house]) == [trip]


def test_estimate_completion_uses_average_daily_rate() -> None:
    today = date(2024, 6, 11)
    goal = Goal.open(1, "Notebook", Money("1000.00"), date(2025, 1, 1), today=date(2024, 6, 1))
    assert estimate_completion(goal, today) == date(2025, 1, 1)

    goal.created_at = utcnow().replace(year=2024, month=6, day=1)
    goal.add_progress(Money("100.00"))
    assert percentage(goal) == Decimal("10.00")
    assert display_percentage(goal) == Decimal("10.00")
    assert estimate_completion(goal, today) == today + timedelta(days=90)

    goal.add_progress(Money("900.00"))
    assert estimate_completion(goal, today) == goal.achieved_at.date()


def test_paused_goal_rejects_manual_progress(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    goal = goals.create(_goal_in())
    goals.pause(goal.id)
    with pytest.raises(BusinessRuleError):
        goals.add_progress(goal.id, Decimal("10.00"))
    assert goals.get(goal.id).current.is_zero()

    goals.resume(goal.id)
    goals.add_progress(goal.id, Decimal("10.00"))
    assert goals.get(goal.id).current == Money("10.00")


def test_paused_goal_is_skipped_by_income(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    txns = TransactionService(session, owner.id, settings=settings)
    goal = goals.create(_goal_in())
    goals.pause(goal.id)
    txns.create(_income("100.00", "Reserva"))
    assert goals.get(goal.id).current.is_zero()


def test_refresh_deadlines_marks_overdue(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    late = goals.create(
        GoalIn(name="Festa", target=Decimal("800.00"), deadline=date(2020, 6, 1)),
        today=date(2020, 1, 1),
    )
    on_time = goals.create(_goal_in())

    overdue = goals.refresh_deadlines(today=date(2020, 7, 1))
    assert [goal.id for goal in overdue] == [late.id]
    assert goals.get(late.id).status == GoalStatus.overdue
    assert goals.get(on_time.id).status == GoalStatus.active
    with pytest.raises(BusinessRuleError):
        goals.add_progress(late.id, Decimal("10.00"))

    goals.postpone(late.id, FAR_DEADLINE)
    assert goals.get(late.id).status == GoalStatus.active
    assert goals.refresh_deadlines(today=date(2020, 7, 1)) == []


def test_create_validates_deadline_and_target(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    with pytest.raises(ValidationError):
        goals.create(
            GoalIn(name="Passado", target=Decimal("10.00"), deadline=date.today() - timedelta(days=1))
        )
    with pytest.raises(ValidationError):
        goals.create(_goal_in(target="0"))
    assert goals.list() == []


def test_retarget_and_cancel(session, owner, notifier, settings) -> None:
    goals = GoalService(session, owner.id, notifier=notifier, settings=settings)
    goal = goals.create(_goal_in())
    goals.add_progress(goal.id, Decimal("400.00"))
    goals.retarget(goal.id, Decimal("400.00"))
    assert goals.get(goal.id).status == GoalStatus.concluded
    assert notifier.goal_events == [goal.id]

    other = goals.create(_goal_in("Curso"))
    goals.cancel(other.id)
    assert [g.id for g in goals.list([GoalStatus.cancelled])] == [other.id]
    with pytest.raises(BusinessRuleError):
        goals.add_progress(other.id, Decimal("1.00"))


def test_goal_belongs_to_owner(session, owner, other_owner, settings) -> None:
    goal = GoalService(session, owner.id, settings=settings).create(_goal_in())
    theirs = GoalService(session, other_owner.id, settings=settings)
    with pytest.raises(OwnershipError):
        theirs.progress(goal.id)
    with pytest.raises(OwnershipError):
        theirs.add_progress(goal.id, Decimal("5.00"))


def test_slow_goal_projection_is_clamped(session, owner, settings) -> None:
    goals = GoalService(session, owner.id, settings=settings)
    goal = goals.create(_goal_in("Casa propria", "100000.00"))
    goal.created_at = utcnow() - timedelta(days=30)
    session.commit()
    goals.add_progress(goal.id, Decimal("1.00"))

    assert goals.progress(goal.id).projected_completion == date.max
    summary = DashboardService(session, owner.id, settings=settings).summary()
    [entry] = summary.goals
    assert entry.projected_completion == date.max
    assert entry.percentage == Decimal("0.00")
