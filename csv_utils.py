import csv
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Transaction

CSV_HEADER = ["Date", "Type", "Category", "Description", "Amount"]
UNCATEGORIZED = "Uncategorized"

# 100 billion in major units
MAX_CENTS = 10**13
PLAIN_AMOUNT = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")
GROUPED_AMOUNT = re.compile(r"^\d{1,3}(,\d{3})+(\.\d*)?$")
DECIMAL_COMMA_AMOUNT = re.compile(r"^\d+,\d{1,2}$")


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a user-entered money string into integer cents.

    Accepts currency symbols and spaces. A comma followed by groups of exactly
    three digits is a thousands separator (``1,234`` or ``1,234.50``); a comma
    followed by one or two digits is a decimal comma (``12,5``). Anything else
    containing a comma is rejected rather than guessed at.
    """
    clean = value.strip()
    for symbol in ("$", "€", "£", " "):
        clean = clean.replace(symbol, "")
    negative = clean.startswith("-")
    if negative:
        clean = clean[1:]
    if "," in clean:
        if GROUPED_AMOUNT.match(clean):
            clean = clean.replace(",", "")
        elif DECIMAL_COMMA_AMOUNT.match(clean):
            clean = clean.replace(",", ".")
        else:
            raise ValueError("Invalid amount")
    if not PLAIN_AMOUNT.match(clean):
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
        if amount * 100 > MAX_CENTS:
            raise ValueError("Amount is too large")
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if negative:
        cents = -cents
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for txn in transactions:
        category_name = txn.category.name if txn.category else UNCATEGORIZED
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.type.value,
                sanitize_csv_value(category_name),
                sanitize_csv_value(txn.description or ""),
                format_cents(txn.amount_cents),
            ]
        )
    return output.getvalue()
