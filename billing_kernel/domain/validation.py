"""
Boundary validation for user-entered values.

Invalid input is rejected here, before any calculation, with a typed
ValidationError.  Nothing non-numeric is ever coerced to zero; the only
silent mapping is empty input -> None, which callers treat as "clear".
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from billing_kernel.domain.calendar import DateRange
from billing_kernel.exceptions import InvalidDateError, InvalidManualValueError

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PERIOD = re.compile(r"^(\d{4})-(\d{2})$")


def parse_manual_value(raw: object) -> Decimal | None:
    """
    Parse a free-form numeric entry (hours, sessions, an amount).

    ``None`` and blank strings return None.  A comma decimal separator is
    accepted.  Anything else that is not a finite number raises
    InvalidManualValueError.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidManualValueError(raw)
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        text = raw.strip().replace(",", ".")
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise InvalidManualValueError(raw) from None
    else:
        raise InvalidManualValueError(raw)

    if not value.is_finite():
        raise InvalidManualValueError(raw)
    return value


def parse_date(raw: object) -> date:
    """Accept a date (or datetime) or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and _ISO_DATE.match(raw.strip()):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError:
            raise InvalidDateError(raw) from None
    raise InvalidDateError(raw)


def parse_period(raw: object) -> DateRange:
    """Accept a DateRange or a ``YYYY-MM`` month string."""
    if isinstance(raw, DateRange):
        return raw
    if isinstance(raw, str):
        match = _PERIOD.match(raw.strip())
        if match:
            year, month = int(match.group(1)), int(match.group(2))
            if 1 <= month <= 12:
                return DateRange.for_month(year, month)
    raise InvalidDateError(raw)
