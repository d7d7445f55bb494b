from datetime import date

import pytest
from pydantic import ValidationError

from models import RecurringInterval, TransactionType
from schemas import (
    CategoryIn,
    ContributionIn,
    GoalIn,
    SignUpIn,
    TransactionIn,
    field_errors,
)


def test_money_strings_parse_into_cents() -> None:
    for raw, cents in (
        ("12.50", 1250),
        ("$1,234.50", 123450),
        ("1,234", 123400),
        ("1,500", 150000),
        ("2,000,000", 200000000),
        ("7,5", 750),
        ("€ 3", 300),
    ):
        data = TransactionIn(
            amount_cents=raw,
            description="x",
            date="2024-01-01",
            category_id="1",
            type="expense",
        )
        assert data.amount_cents == cents


def test_blank_fields_are_reported_as_required() -> None:
    with pytest.raises(ValidationError) as exc_info:
        TransactionIn(
            amount_cents="0",
            description="   ",
            date="",
            category_id="",
            type="expense",
        )
    errors = field_errors(exc_info.value)
    assert errors["description"] == "This field is required"
    assert errors["date"] == "This field is required"
    assert errors["category_id"] == "This field is required"
    assert "amount_cents" in errors


def test_recurrence_fields_cleared_when_not_recurring() -> None:
    data = TransactionIn(
        amount_cents=100,
        description="Gym",
        date=date(2024, 1, 1),
        category_id=1,
        type=TransactionType.expense,
        recurring_interval="monthly",
        recurring_end_date="2024-12-31",
    )
    assert data.recurring_interval is None
    assert data.recurring_end_date is None


def test_recurring_transaction_requires_interval_and_ordered_end_date() -> None:
    base = dict(
        amount_cents=100,
        description="Gym",
        date="2024-05-01",
        category_id=1,
        type="expense",
        is_recurring="on",
    )
    with pytest.raises(ValidationError) as exc_info:
        TransactionIn(**base)
    assert field_errors(exc_info.value)["__all__"] == "Recurring transactions need an interval"

    with pytest.raises(ValidationError):
        TransactionIn(**base, recurring_interval="weekly", recurring_end_date="2024-04-01")

    ok = TransactionIn(**base, recurring_interval="weekly", recurring_end_date="2024-06-01")
    assert ok.is_recurring
    assert ok.recurring_interval == RecurringInterval.weekly


def test_sign_up_messages() -> None:
    with pytest.raises(ValidationError) as exc_info:
        SignUpIn(email="not-an-email", password="123", full_name="Al")
    errors = field_errors(exc_info.value)
    assert errors["email"] == "Please enter a valid email"
    assert errors["password"] == "Password must be at least 6 characters"
    assert errors["full_name"] == "Full name must be at least 3 characters"


def test_category_color_and_budget_validation() -> None:
    with pytest.raises(ValidationError) as exc_info:
        CategoryIn(name="Food", type="expense", color="teal", budget_cents="-1")
    errors = field_errors(exc_info.value)
    assert set(errors) == {"color", "budget_cents"}

    category = CategoryIn(name=" Food ", type="expense", budget_cents="250")
    assert category.name == "Food"
    assert category.budget_cents == 25_000


def test_unreadable_or_oversized_amounts_are_field_errors() -> None:
    for raw, message in (
        ("1,2345", "Invalid amount"),
        ("12,34,5", "Invalid amount"),
        ("1e30", "Invalid amount"),
        ("Infinity", "Invalid amount"),
        ("NaN", "Invalid amount"),
        ("99999999999999999999", "Amount is too large"),
    ):
        with pytest.raises(ValidationError) as exc_info:
            GoalIn(name="House", target_cents=raw)
        assert field_errors(exc_info.value) == {"target_cents": message}, raw

    with pytest.raises(ValidationError) as exc_info:
        ContributionIn(amount_cents=10**14)
    assert "amount_cents" in field_errors(exc_info.value)
