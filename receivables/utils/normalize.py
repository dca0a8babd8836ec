"""
Numeric and date coercion shared by every component.

Money is carried as ``Decimal`` quantized to cents. Dates are plain
``datetime.date`` values; the store exchanges them as ISO ``YYYY-MM-DD``.
"""

from datetime import date, datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional

from dateutil.relativedelta import relativedelta

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
MONEY_TOLERANCE = Decimal("0.01")

_PERIOD_DAYS = {
    "WEEKLY": 7,
    "BIWEEKLY": 15,
}


def to_money(value: Any) -> Decimal:
    """
    Coerce a value to a non-negative amount in cents.

    Accepts numbers, ``Decimal`` and strings in either ``1234.56`` or
    Brazilian ``1.234,56`` notation. ``None`` and empty strings are zero.

    Raises:
        ValueError: If the value is not numeric or is negative
    """
    if value is None or value == "":
        return ZERO

    if isinstance(value, bool):
        raise ValueError(f"Invalid money value: {value!r}")

    if isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, (int, Decimal)):
        amount = Decimal(value)
    else:
        text = str(value).strip().replace("R$", "").replace(" ", "")
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid money value: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Invalid money value: {value!r}")

    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount < 0:
        raise ValueError(f"Money value cannot be negative: {value!r}")
    return amount


def money_equal(a: Any, b: Any, tolerance: Decimal = MONEY_TOLERANCE) -> bool:
    """Two amounts are equal when they differ by at most ``tolerance``."""
    return abs(to_money(a) - to_money(b)) <= tolerance


def money_to_float(value: Optional[Decimal]) -> Optional[float]:
    """Convert to the float representation expected by the JSON store."""
    if value is None:
        return None
    return float(value)


def parse_date(value: Any) -> Optional[date]:
    """
    Parse an ISO date (or datetime) into a ``date``.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"Invalid date value: {value!r}")


def date_to_iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def normalize_text(value: Any) -> str:
    """Upper-case and strip a free-text code (client, category, method)."""
    if value is None:
        return ""
    value = getattr(value, "value", value)
    return " ".join(str(value).split()).upper()


def add_frequency(base: date, frequency: str, periods: int) -> date:
    """
    Return the date ``periods`` installments after ``base``.

    Each date is computed from ``base`` so month-end dates do not drift:
    a MONTHLY schedule from Jan 31 yields Feb 29/28, then Mar 31.
    """
    key = getattr(frequency, "value", frequency)
    if key == "MONTHLY":
        return base + relativedelta(months=periods)
    if key not in _PERIOD_DAYS:
        raise ValueError(f"Unknown frequency: {frequency!r}")
    return base + relativedelta(days=_PERIOD_DAYS[key] * periods)


def days_overdue(due: Optional[date], today: date) -> int:
    if not due:
        return 0
    return max(0, (today - due).days)


def split_amount(total: Decimal, parts: int) -> List[Decimal]:
    """
    Split ``total`` into ``parts`` cent amounts that add up exactly.

    Every part gets the truncated equal share; the rounding remainder is
    absorbed by the last part.
    """
    if parts < 1:
        raise ValueError("parts must be at least 1")

    total = to_money(total)
    if total < CENTS * parts:
        raise ValueError(f"{total} cannot be split into {parts} parts of at least {CENTS}")
    share = (total / parts).quantize(CENTS, rounding=ROUND_DOWN)
    amounts = [share] * parts
    amounts[-1] = total - share * (parts - 1)
    return amounts
