"""
DTOs -- immutable records that cross the selector / engine boundary.

Selectors build these from ORM rows; engines and services read them.  No
engine ever sees an ORM instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from billing_kernel.domain.rules import AccrualMode, BillingRules, Deduction
from billing_kernel.exceptions import InvalidRuleError


def _uuid_tuple(raw: Any, field_name: str) -> tuple[UUID, ...]:
    if not raw:
        return ()
    try:
        return tuple(UUID(str(v)) for v in raw)
    except (TypeError, ValueError):
        raise InvalidRuleError(field_name, raw, "must be a list of ids") from None


@dataclass(frozen=True)
class ControllerConfig:
    """Links a controller activity to its base and food tariff activities."""

    base_tariff_ids: tuple[UUID, ...] = ()
    food_tariff_ids: tuple[UUID, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ControllerConfig | None:
        """None when the activity carries no controller configuration."""
        if not data:
            return None
        base = _uuid_tuple(data.get("base_tariff_ids"), "config.base_tariff_ids")
        food = _uuid_tuple(data.get("food_tariff_ids"), "config.food_tariff_ids")
        if not base and not food:
            return None
        return cls(base_tariff_ids=base, food_tariff_ids=food)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_tariff_ids": [str(i) for i in self.base_tariff_ids],
            "food_tariff_ids": [str(i) for i in self.food_tariff_ids],
        }


@dataclass(frozen=True)
class ActivityInfo:
    id: UUID
    name: str
    billing_rules: BillingRules = field(default_factory=BillingRules)
    default_price: Decimal | None = None
    controller_config: ControllerConfig | None = None
    is_active: bool = True
    auto_journal: bool = True


@dataclass(frozen=True)
class EnrollmentInfo:
    id: UUID
    student_id: UUID
    activity_id: UUID
    custom_price: Decimal | None = None
    discount_percent: Decimal = Decimal("0")
    is_active: bool = True


@dataclass(frozen=True)
class AttendanceRecord:
    """
    One attendance mark, joined with its enrollment's student and activity.

    ``value`` is the free numeric entry (hours, sessions) or, for a
    manually edited record, the amount typed in.
    """

    enrollment_id: UUID
    activity_id: UUID
    student_id: UUID
    date: date
    status: str | None = None
    charged_amount: Decimal | None = None
    value: Decimal | None = None
    manual_value_edit: bool = False
    notes: str | None = None
    id: UUID | None = None

    @property
    def is_present(self) -> bool:
        return self.status == "present"

    @property
    def is_empty(self) -> bool:
        return self.status is None and not self.value


@dataclass(frozen=True)
class GroupLessonInfo:
    id: UUID
    activity_id: UUID
    name: str
    staff_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class StaffInfo:
    id: UUID
    full_name: str
    deductions: tuple[Deduction, ...] = ()
    accrual_mode: AccrualMode = AccrualMode.AUTO
    is_active: bool = True


@dataclass(frozen=True)
class JournalEntryInfo:
    id: UUID
    staff_id: UUID
    activity_id: UUID | None
    date: date
    amount: Decimal
    base_amount: Decimal
    deductions_applied: tuple[Mapping[str, Any], ...] = ()
    is_manual_override: bool = False
    group_lesson_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PayoutInfo:
    id: UUID
    staff_id: UUID
    amount: Decimal
    payout_date: date
    notes: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class TransactionInfo:
    id: UUID
    type: str
    amount: Decimal
    date: date
    student_id: UUID | None = None
    activity_id: UUID | None = None
    staff_id: UUID | None = None
    description: str | None = None
    category: str | None = None
