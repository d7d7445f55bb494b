import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurringInterval, Transaction

logger = logging.getLogger(__name__)

MAX_OCCURRENCES_PER_RUN = 366


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def calculate_next_date(
    interval: RecurringInterval, from_date: date, anchor_day: Optional[int] = None
) -> date:
    """Next occurrence after ``from_date``.

    Monthly and yearly intervals keep ``anchor_day`` where the month allows it
    and otherwise snap to the last day of the month (Jan 31 -> Feb 28 -> Mar 31).
    """
    anchor_day = anchor_day or from_date.day
    if interval == RecurringInterval.daily:
        return from_date + timedelta(days=1)
    if interval == RecurringInterval.weekly:
        return from_date + timedelta(weeks=1)
    if interval == RecurringInterval.monthly:
        return _add_months(from_date, 1, desired_day=anchor_day)
    return _add_months(from_date, 12, desired_day=anchor_day)


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def due_sources(self, today: date, user_id: Optional[int] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.recurring_interval.is_not(None),
                Transaction.origin_transaction_id.is_(None),
                Transaction.date < today,
            )
            .order_by(Transaction.date, Transaction.id)
        )
        if user_id is not None:
            stmt = stmt.where(Transaction.user_id == user_id)
        return list(self.session.scalars(stmt))

    def catch_up(self, source: Transaction, today: Optional[date] = None) -> int:
        today = today or local_today()
        limit = today
        if source.recurring_end_date and source.recurring_end_date < limit:
            limit = source.recurring_end_date

        existing = set(
            self.session.scalars(
                select(Transaction.occurrence_date).where(
                    Transaction.origin_transaction_id == source.id
                )
            )
        )
        anchor_day = source.date.day
        occurrence = calculate_next_date(source.recurring_interval, source.date, anchor_day)
        posted = 0
        iterations = 0
        while occurrence <= limit:
            if iterations >= MAX_OCCURRENCES_PER_RUN:
                logger.warning(
                    f"recurring_limit: transaction_id={source.id} stopped_at={occurrence}"
                )
                break
            if occurrence not in existing:
                self._post_occurrence(source, occurrence)
                posted += 1
            occurrence = calculate_next_date(
                source.recurring_interval, occurrence, anchor_day
            )
            iterations += 1
        return posted

    def post_due_transactions(
        self, today: Optional[date] = None, user_id: Optional[int] = None
    ) -> int:
        today = today or local_today()
        count = 0
        for source in self.due_sources(today, user_id):
            count += self.catch_up(source, today)
        if count:
            self.session.flush()
        return count

    def _post_occurrence(self, source: Transaction, occurrence_date: date) -> Transaction:
        txn = Transaction(
            user_id=source.user_id,
            date=occurrence_date,
            type=source.type,
            amount_cents=source.amount_cents,
            description=source.description,
            category_id=source.category_id,
            is_recurring=False,
            origin_transaction_id=source.id,
            occurrence_date=occurrence_date,
        )
        self.session.add(txn)
        return txn
