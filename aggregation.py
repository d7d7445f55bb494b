"""Chart and summary figures derived from already-loaded rows.

Everything here is a pure function over in-memory objects exposing the model
attributes (``date``, ``type``, ``amount_cents``, ``category_id`` ...), so the
same helpers serve ORM rows and plain test fixtures alike.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from models import TransactionType

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

BUDGET_WARNING_PERCENT = 75
BUDGET_DANGER_PERCENT = 90


@dataclass(frozen=True)
class MonthSummary:
    label: str
    year: int
    month: int
    income_cents: int
    expense_cents: int
    balance_cents: int


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    color: str
    amount_cents: int
    percent: int


@dataclass(frozen=True)
class BudgetStatus:
    spent_cents: int
    remaining_cents: int
    percentage: int
    status: str


@dataclass(frozen=True)
class Totals:
    income_cents: int
    expense_cents: int
    balance_cents: int
    count: int
    average_cents: int


@dataclass(frozen=True)
class DailyPoint:
    day: date
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class InvestmentReturn:
    invested_cents: int
    value_cents: int
    return_cents: int
    return_percent: float


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(part: int, whole: int) -> int:
    if not whole:
        return 0
    return round_half_up(Decimal(part) * 100 / Decimal(whole))


def last_n_months(n: int, today: Optional[date] = None) -> list[tuple[int, int]]:
    """``n`` trailing (year, month) pairs ending with today's month, oldest first."""
    today = today or date.today()
    months: list[tuple[int, int]] = []
    year, month = today.year, today.month
    for _ in range(n):
        months.append((year, month))
        month -= 1
        if month == 0:
            year -= 1
            month = 12
    months.reverse()
    return months


def month_label(year: int, month: int) -> str:
    return MONTH_LABELS[month - 1]


def monthly_summary(
    transactions: Iterable, months: int = 6, *, today: Optional[date] = None
) -> list[MonthSummary]:
    buckets = {key: [0, 0] for key in last_n_months(months, today)}
    for txn in transactions:
        bucket = buckets.get((txn.date.year, txn.date.month))
        if bucket is None:
            continue
        if txn.type == TransactionType.income:
            bucket[0] += txn.amount_cents
        else:
            bucket[1] += txn.amount_cents

    return [
        MonthSummary(
            label=month_label(year, month),
            year=year,
            month=month,
            income_cents=income,
            expense_cents=expense,
            balance_cents=income - expense,
        )
        for (year, month), (income, expense) in buckets.items()
    ]


def category_summary(
    transactions: Iterable,
    categories: Sequence,
    transaction_type: Optional[TransactionType] = None,
) -> list[CategoryTotal]:
    """Per-category totals, largest first; categories with nothing spent are dropped."""
    if transaction_type is not None:
        categories = [c for c in categories if c.type == transaction_type]
    by_id = {c.id: c for c in categories}

    totals: dict[int, int] = defaultdict(int)
    for txn in transactions:
        category = by_id.get(txn.category_id)
        if category is None or txn.type != category.type:
            continue
        totals[txn.category_id] += txn.amount_cents

    grand_total = sum(totals.values())
    rows = [
        CategoryTotal(
            category_id=category_id,
            name=by_id[category_id].name,
            color=by_id[category_id].color,
            amount_cents=amount,
            percent=percent_of(amount, grand_total),
        )
        for category_id, amount in totals.items()
        if amount
    ]
    rows.sort(key=lambda row: (-row.amount_cents, row.name.lower()))
    return rows


def budget_tier(percentage: int) -> str:
    if percentage >= BUDGET_DANGER_PERCENT:
        return "danger"
    if percentage >= BUDGET_WARNING_PERCENT:
        return "warning"
    return "normal"


def budget_status(category, transactions: Iterable) -> Optional[BudgetStatus]:
    """Spending against ``category.budget_cents``.

    ``transactions`` is expected to be the current month's rows; only those
    booked on the category count. Returns None for categories without a budget.
    """
    if not category.budget_cents:
        return None
    spent = sum(t.amount_cents for t in transactions if t.category_id == category.id)
    percentage = percent_of(spent, category.budget_cents)
    return BudgetStatus(
        spent_cents=spent,
        remaining_cents=category.budget_cents - spent,
        percentage=percentage,
        status=budget_tier(percentage),
    )


def transaction_totals(transactions: Sequence) -> Totals:
    income = sum(t.amount_cents for t in transactions if t.type == TransactionType.income)
    expense = sum(
        t.amount_cents for t in transactions if t.type == TransactionType.expense
    )
    count = len(transactions)
    average = round_half_up(Decimal(income + expense) / count) if count else 0
    return Totals(
        income_cents=income,
        expense_cents=expense,
        balance_cents=income - expense,
        count=count,
        average_cents=average,
    )


def daily_summary(transactions: Iterable, start: date, end: date) -> list[DailyPoint]:
    """One point per calendar day that has activity between ``start`` and ``end``."""
    days: dict[date, list[int]] = defaultdict(lambda: [0, 0])
    for txn in transactions:
        if not start <= txn.date <= end:
            continue
        slot = days[txn.date]
        if txn.type == TransactionType.income:
            slot[0] += txn.amount_cents
        else:
            slot[1] += txn.amount_cents
    return [
        DailyPoint(day=day, income_cents=income, expense_cents=expense)
        for day, (income, expense) in sorted(days.items())
    ]


def goal_progress(current_cents: int, target_cents: int) -> int:
    if target_cents <= 0:
        return 0
    return min(100, percent_of(current_cents, target_cents))


def investment_return(invested_cents: int, value_cents: int) -> InvestmentReturn:
    gain = value_cents - invested_cents
    percent = (gain / invested_cents * 100) if invested_cents else 0.0
    return InvestmentReturn(
        invested_cents=invested_cents,
        value_cents=value_cents,
        return_cents=gain,
        return_percent=round(percent, 2),
    )


def portfolio_summary(investments: Iterable) -> InvestmentReturn:
    invested = 0
    value = 0
    for item in investments:
        invested += item.invested_cents
        value += item.current_value_cents
    return investment_return(invested, value)
