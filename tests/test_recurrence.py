from contextlib import contextmanager
from datetime import date, timedelta

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, RecurringInterval, Transaction, TransactionType
from recurrence import RecurringEngine, calculate_next_date, local_today
from scheduler import SchedulerManager


def test_calculate_next_date_snaps_to_month_end() -> None:
    assert calculate_next_date(
        RecurringInterval.monthly, date(2024, 1, 31), 31
    ) == date(2024, 2, 29)
    # the anchor day comes back once the month is long enough again
    assert calculate_next_date(
        RecurringInterval.monthly, date(2024, 2, 29), 31
    ) == date(2024, 3, 31)


def test_calculate_next_date_other_intervals() -> None:
    start = date(2024, 2, 29)
    assert calculate_next_date(RecurringInterval.daily, start) == date(2024, 3, 1)
    assert calculate_next_date(RecurringInterval.weekly, start) == date(2024, 3, 7)
    assert calculate_next_date(RecurringInterval.yearly, start) == date(2025, 2, 28)


def _source(session: Session, **overrides) -> Transaction:
    category = Category(
        user_id=1, name="Bills", type=TransactionType.expense, color="#ef4444", icon="Receipt"
    )
    session.add(category)
    session.flush()
    values = dict(
        user_id=1,
        date=date(2024, 1, 31),
        type=TransactionType.expense,
        amount_cents=4_500,
        description="Phone plan",
        category_id=category.id,
        is_recurring=True,
        recurring_interval=RecurringInterval.monthly,
    )
    values.update(overrides)
    txn = Transaction(**values)
    session.add(txn)
    session.commit()
    return txn


def test_recurring_engine_idempotent_posts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        source = _source(session)
        recurring = RecurringEngine(session)

        assert recurring.post_due_transactions(today=date(2024, 4, 15)) == 2
        session.commit()
        assert recurring.post_due_transactions(today=date(2024, 4, 15)) == 0

        occurrences = session.scalars(
            select(Transaction)
            .where(Transaction.origin_transaction_id == source.id)
            .order_by(Transaction.date)
        ).all()
        assert [t.date for t in occurrences] == [date(2024, 2, 29), date(2024, 3, 31)]
        assert all(not t.is_recurring for t in occurrences)
        assert all(t.description == "Phone plan" for t in occurrences)


def test_recurring_engine_respects_end_date_and_user_filter() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _source(
            session,
            date=date(2024, 3, 1),
            recurring_interval=RecurringInterval.weekly,
            recurring_end_date=date(2024, 3, 20),
        )
        recurring = RecurringEngine(session)

        assert recurring.post_due_transactions(today=date(2024, 6, 1), user_id=2) == 0
        # Mar 8, 15; Mar 22 is past the end date
        assert recurring.post_due_transactions(today=date(2024, 6, 1), user_id=1) == 2


def test_deleting_source_keeps_posted_occurrences() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        source = _source(session)
        RecurringEngine(session).post_due_transactions(today=date(2024, 3, 1))
        session.commit()

        session.delete(source)
        session.commit()

        remaining = session.scalars(select(Transaction)).all()
        assert len(remaining) == 1
        assert remaining[0].origin_transaction_id is None
        assert remaining[0].date == date(2024, 2, 29)


def test_scheduler_run_now_commits_through_scope() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    @contextmanager
    def scope():
        with Session(engine) as session:
            yield session
            session.commit()

    with Session(engine) as session:
        source = _source(
            session,
            date=local_today() - timedelta(days=10),
            recurring_interval=RecurringInterval.daily,
        )
        source_id = source.id

    manager = SchedulerManager(scope=scope)
    assert manager.run_now("test") == 10
    assert manager.run_now("test") == 0

    with Session(engine) as session:
        occurrences = session.scalars(
            select(Transaction).where(Transaction.origin_transaction_id == source_id)
        ).all()
        assert len(occurrences) == 10
        assert max(t.date for t in occurrences) == local_today()
