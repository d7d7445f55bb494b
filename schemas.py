import re
from datetime import date
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from csv_utils import MAX_CENTS, parse_amount
from models import InvestmentType, RecurringInterval, RiskLevel, TransactionType

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"


def _cents(value: Any) -> Any:
    if isinstance(value, str):
        return parse_amount(value)
    return value


def field_errors(exc: ValidationError) -> dict[str, str]:
    """Flatten a ValidationError into one message per form field."""
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else "__all__"
        if err["type"] == "missing" or err.get("input", "") is None:
            message = "This field is required"
        else:
            message = err["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, ") :]
        errors.setdefault(field, message)
    return errors


class FormModel(BaseModel):
    """Base for models fed from HTML forms: blank strings count as missing."""

    model_config = ConfigDict(str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def blank_to_none(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                key: (None if isinstance(value, str) and not value.strip() else value)
                for key, value in data.items()
            }
        return data


class SignInIn(FormModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please enter a valid email")
        return value.lower()

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value


class SignUpIn(SignInIn):
    full_name: str = Field(..., max_length=120)

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("Full name must be at least 3 characters")
        return value


class ProfileIn(FormModel):
    full_name: Optional[str] = Field(default=None, max_length=120)
    currency: str = Field(default="$", min_length=1, max_length=8)


class CategoryIn(FormModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#14b8a6", pattern=COLOR_PATTERN)
    icon: str = Field(default="Tag", min_length=1, max_length=40)
    budget_cents: Optional[int] = Field(default=None, ge=0, le=MAX_CENTS)

    @field_validator("budget_cents", mode="before")
    @classmethod
    def parse_budget(cls, value: Any) -> Any:
        return _cents(value)


class BudgetIn(FormModel):
    category_id: int
    budget_cents: int = Field(..., gt=0, le=MAX_CENTS)

    @field_validator("budget_cents", mode="before")
    @classmethod
    def parse_budget(cls, value: Any) -> Any:
        return _cents(value)


class TransactionIn(FormModel):
    amount_cents: int = Field(..., gt=0, le=MAX_CENTS)
    description: str = Field(..., min_length=1, max_length=200)
    date: date
    category_id: int
    type: TransactionType
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None
    recurring_end_date: Optional[date] = None

    @field_validator("amount_cents", mode="before")
    @classmethod
    def parse_amount_cents(cls, value: Any) -> Any:
        return _cents(value)

    @model_validator(mode="after")
    def check_recurrence(self) -> "TransactionIn":
        if not self.is_recurring:
            self.recurring_interval = None
            self.recurring_end_date = None
            return self
        if self.recurring_interval is None:
            raise ValueError("Recurring transactions need an interval")
        if self.recurring_end_date and self.recurring_end_date < self.date:
            raise ValueError("Recurring end date must be on or after the date")
        return self


class GoalIn(FormModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0, le=MAX_CENTS)
    current_cents: int = Field(default=0, ge=0, le=MAX_CENTS)
    target_date: Optional[date] = None
    color: str = Field(default="#14b8a6", pattern=COLOR_PATTERN)
    icon: str = Field(default="PiggyBank", min_length=1, max_length=40)

    @field_validator("target_cents", "current_cents", mode="before")
    @classmethod
    def parse_amounts(cls, value: Any) -> Any:
        return _cents(value)


class ContributionIn(FormModel):
    amount_cents: int = Field(..., gt=0, le=MAX_CENTS)

    @field_validator("amount_cents", mode="before")
    @classmethod
    def parse_amount_cents(cls, value: Any) -> Any:
        return _cents(value)


class InvestmentIn(FormModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: InvestmentType = InvestmentType.stocks
    invested_cents: int = Field(..., gt=0, le=MAX_CENTS)
    current_value_cents: int = Field(..., gt=0, le=MAX_CENTS)
    purchase_date: date
    risk_level: RiskLevel = RiskLevel.medium
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("invested_cents", "current_value_cents", mode="before")
    @classmethod
    def parse_amounts(cls, value: Any) -> Any:
        return _cents(value)
