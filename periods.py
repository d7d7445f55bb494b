from dataclasses import dataclass
from datetime import date
from typing import Optional

PERIOD_CHOICES = (
    ("this_month", "This month"),
    ("last_month", "Last month"),
    ("recent", "Last two months"),
    ("all", "All time"),
    ("custom", "Custom range"),
)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def previous_month_start(day: date) -> date:
    return month_start(month_start(day) - date.resolution)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
    default: str = "this_month",
) -> Period:
    today = today or date.today()
    period = period or default
    if period == "all":
        return Period("all", date(1970, 1, 1), month_end(today))
    if period == "last_month":
        last_month_end = month_start(today) - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "recent":
        return Period("recent", previous_month_start(today), month_end(today))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")
    return Period("this_month", month_start(today), month_end(today))
