import csv
from datetime import date
from io import StringIO
from types import SimpleNamespace

import pytest

from csv_utils import export_transactions, parse_amount, sanitize_csv_value
from models import TransactionType
from periods import resolve_period


def _row(description: str, category=None, amount: int = 1_999):
    return SimpleNamespace(
        date=date(2024, 2, 3),
        type=TransactionType.expense,
        category=category,
        description=description,
        amount_cents=amount,
    )


def test_export_columns_and_uncategorized_fallback() -> None:
    text = export_transactions(
        [
            _row("Train ticket", SimpleNamespace(name="Transportation")),
            _row("Mystery", None, 5),
        ]
    )
    rows = list(csv.reader(StringIO(text)))
    assert rows[0] == ["Date", "Type", "Category", "Description", "Amount"]
    assert rows[1] == ["2024-02-03", "expense", "Transportation", "Train ticket", "19.99"]
    assert rows[2] == ["2024-02-03", "expense", "Uncategorized", "Mystery", "0.05"]


def test_export_neutralises_formulas() -> None:
    text = export_transactions([_row("=HYPERLINK(\"http://x\")")])
    rows = list(csv.reader(StringIO(text)))
    assert rows[1][3].startswith("\t=")
    assert sanitize_csv_value("  plain  ") == "plain"


def test_parse_amount_rejects_garbage_and_negatives() -> None:
    with pytest.raises(ValueError, match="Invalid amount"):
        parse_amount("twelve")
    with pytest.raises(ValueError, match="positive"):
        parse_amount("-4")
    assert parse_amount("-4", allow_negative=True) == -400


def test_resolve_periods() -> None:
    today = date(2024, 3, 15)

    this_month = resolve_period(None, None, None, today=today)
    assert (this_month.start, this_month.end) == (date(2024, 3, 1), date(2024, 3, 31))

    last_month = resolve_period("last_month", None, None, today=today)
    assert (last_month.start, last_month.end) == (date(2024, 2, 1), date(2024, 2, 29))

    recent = resolve_period("recent", None, None, today=date(2024, 1, 10))
    assert (recent.start, recent.end) == (date(2023, 12, 1), date(2024, 1, 31))

    custom = resolve_period("custom", "2024-01-05", "2024-01-20", today=today)
    assert custom.slug == "custom"

    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-01", "2024-01-01", today=today)
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None, today=today)
