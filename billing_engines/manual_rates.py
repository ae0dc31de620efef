"""
Manual-rate accrual for staff in manual accrual mode.

Pure functions. No I/O.

A manual journal entry is a quantity (hours or sessions) typed against a
date.  The amount is ``quantity x manual_rate_value`` using the manual rate
effective on that date; an activity-specific rate beats the staff-wide one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from billing_kernel.db.types import round_money
from billing_kernel.domain.rules import ManualRate, ManualRateType
from billing_engines.rule_index import resolve_scoped

_UNIT = {
    ManualRateType.HOURLY: "h",
    ManualRateType.PER_SESSION: "sessions",
}


@dataclass(frozen=True)
class ManualAccrual:
    amount: Decimal
    note: str


def manual_rate_for_date(
    rates: Iterable[ManualRate],
    on_date: date,
    activity_id: UUID | None = None,
) -> ManualRate | None:
    return resolve_scoped(rates, on_date, activity_id)


def manual_accrual(rate: ManualRate, quantity: Decimal) -> ManualAccrual:
    """``quantity x rate``, with a note such as ``"2 h x 150.00"``."""
    amount = round_money(quantity * rate.rate_value)
    note = f"{quantity.normalize():f} {_UNIT[rate.rate_type]} x {round_money(rate.rate_value)}"
    return ManualAccrual(amount=amount, note=note)
