import calendar
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Start date must be before end date")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: "Period") -> bool:
        return self.start <= other.end and other.start <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def add_months(d: date, count: int) -> date:
    month_index = d.month - 1 + count
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def month_bounds(day: date) -> Period:
    first = day.replace(day=1)
    end = add_months(first, 1) - date.resolution
    return Period("month", first, end)


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    annual = "annual"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "annual": 12}[self.value]

    def end_for(self, start: date) -> date:
        return add_months(start, self.months) - date.resolution

    def window(self, start: date) -> Period:
        return Period(self.value, start, self.end_for(start))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        last_month = month_bounds(today.replace(day=1) - date.resolution)
        return Period("last_month", last_month.start, last_month.end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        return Period("custom", date.fromisoformat(start), date.fromisoformat(end))

    this_month = month_bounds(today)
    return Period("this_month", this_month.start, this_month.end)
