"""
Rules -- pure value objects for billing rules, staff rules, manual rates
and deductions.

Responsibility:
    Typed, immutable representations of the JSON payloads stored on
    activities, price history, staff billing rules, manual rate history and
    staff deduction lists, plus the ``from_dict`` boundary parsers that turn
    stored payloads into them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Engines consume these
    types; ORM models produce them through ``to_dto()``.

Invariants enforced:
    - Rates and deduction values are Decimal, never float.
    - Unknown rule / rate / deduction types are rejected at parse time with
      InvalidRuleError rather than being ignored downstream.

Failure modes:
    - InvalidRuleError for an unknown ``type``, a missing or non-numeric
      ``rate`` / ``value``, or a non-mapping payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Protocol
from uuid import UUID

from billing_kernel.domain.scope import GLOBAL, Scope
from billing_kernel.exceptions import InvalidRuleError

BASE_STATUSES: tuple[str, ...] = ("present", "sick", "absent", "vacation")
VALUE_RULE_KEY = "value"
CUSTOM_STATUSES_KEY = "custom_statuses"


def parse_decimal_field(field_name: str, raw: Any) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise InvalidRuleError(field_name, raw, "must be a number")
    try:
        value = Decimal(str(raw)) if isinstance(raw, float) else Decimal(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRuleError(field_name, raw, "must be a number") from None
    if not value.is_finite():
        raise InvalidRuleError(field_name, raw, "must be finite")
    return value


def parse_enum_field(enum_cls: type[Enum], field_name: str, raw: Any) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        raise InvalidRuleError(field_name, raw, "unknown type") from None


class BillingRuleType(str, Enum):
    """How a student-facing billing rule turns into money."""

    FIXED = "fixed"
    SUBSCRIPTION = "subscription"
    HOURLY = "hourly"


class StaffRateType(str, Enum):
    """How a staff billing rule turns attendance into an accrual."""

    FIXED = "fixed"
    PERCENT = "percent"
    PER_SESSION = "per_session"
    SUBSCRIPTION = "subscription"
    PER_STUDENT = "per_student"


class ManualRateType(str, Enum):
    HOURLY = "hourly"
    PER_SESSION = "per_session"


class DeductionType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class AccrualMode(str, Enum):
    """Whether a staff member's journal is derived from attendance or typed in."""

    AUTO = "auto"
    MANUAL = "manual"


class TimeBoxed(Protocol):
    """Anything with a half-open ``[effective_from, effective_to)`` window."""

    effective_from: date
    effective_to: date | None
    created_at: datetime | None


@dataclass(frozen=True)
class BillingRule:
    """A ``{rate, type}`` pair for one attendance status or the value rule."""

    rate: Decimal
    type: BillingRuleType

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], key: str = "rule") -> BillingRule:
        if not isinstance(data, Mapping):
            raise InvalidRuleError(key, data, "must be a mapping")
        return cls(
            rate=parse_decimal_field(f"{key}.rate", data.get("rate")),
            type=parse_enum_field(BillingRuleType, f"{key}.type", data.get("type", "fixed")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"rate": str(self.rate), "type": self.type.value}


@dataclass(frozen=True)
class CustomStatusRule:
    """
    A user-defined attendance status with its own rule.

    Unlike base statuses, a custom status may carry a negative rate
    (a refund).  Inactive custom statuses never match.
    """

    id: str
    name: str
    rate: Decimal
    type: BillingRuleType
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CustomStatusRule:
        if not isinstance(data, Mapping) or not data.get("id"):
            raise InvalidRuleError("custom_statuses", data, "entry needs an id")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            rate=parse_decimal_field("custom_statuses.rate", data.get("rate")),
            type=parse_enum_field(BillingRuleType, "custom_statuses.type", data.get("type", "fixed")),
            is_active=data.get("is_active") is not False,
        )

    @property
    def rule(self) -> BillingRule:
        return BillingRule(rate=self.rate, type=self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rate": str(self.rate),
            "type": self.type.value,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class BillingRules:
    """
    The full rule set of an activity or of one price history record.

    ``statuses`` maps base status keys (present, sick, absent, vacation) to
    rules; ``value_rule`` prices free numeric input.
    """

    statuses: Mapping[str, BillingRule] = field(
        default_factory=lambda: MappingProxyType({})
    )
    value_rule: BillingRule | None = None
    custom_statuses: tuple[CustomStatusRule, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BillingRules:
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidRuleError("billing_rules", data, "must be a mapping")
        statuses = {
            key: BillingRule.from_dict(data[key], key)
            for key in BASE_STATUSES
            if data.get(key)
        }
        value_raw = data.get(VALUE_RULE_KEY)
        custom_raw = data.get(CUSTOM_STATUSES_KEY) or ()
        return cls(
            statuses=MappingProxyType(statuses),
            value_rule=BillingRule.from_dict(value_raw, VALUE_RULE_KEY) if value_raw else None,
            custom_statuses=tuple(CustomStatusRule.from_dict(c) for c in custom_raw),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {k: r.to_dict() for k, r in self.statuses.items()}
        if self.value_rule is not None:
            out[VALUE_RULE_KEY] = self.value_rule.to_dict()
        if self.custom_statuses:
            out[CUSTOM_STATUSES_KEY] = [c.to_dict() for c in self.custom_statuses]
        return out

    def custom_status(self, status_id: str) -> CustomStatusRule | None:
        """Active custom status with the given id, if any."""
        for custom in self.custom_statuses:
            if custom.id == status_id and custom.is_active:
                return custom
        return None


@dataclass(frozen=True)
class PriceHistoryRecord:
    """A time-boxed snapshot of an activity's billing rules."""

    id: UUID
    activity_id: UUID
    billing_rules: BillingRules
    effective_from: date
    effective_to: date | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class StaffBillingRule:
    """
    A time-boxed rule for what a staff member earns.

    ``scope`` is Global (every activity of the staff member) or
    ForActivity.  The lesson_limit / penalty / extra_lesson fields are only
    read for ``subscription`` rules.
    """

    id: UUID
    staff_id: UUID
    rate_type: StaffRateType
    rate: Decimal
    effective_from: date
    scope: Scope = GLOBAL
    effective_to: date | None = None
    lesson_limit: int | None = None
    penalty_trigger_percent: Decimal | None = None
    penalty_percent: Decimal | None = None
    extra_lesson_rate: Decimal | None = None
    created_at: datetime | None = None

    @property
    def activity_id(self) -> UUID | None:
        return self.scope.activity_id


@dataclass(frozen=True)
class ManualRate:
    """A time-boxed manual rate for staff in manual accrual mode."""

    id: UUID
    staff_id: UUID
    rate_type: ManualRateType
    rate_value: Decimal
    effective_from: date
    scope: Scope = GLOBAL
    effective_to: date | None = None
    created_at: datetime | None = None

    @property
    def activity_id(self) -> UUID | None:
        return self.scope.activity_id


@dataclass(frozen=True)
class Deduction:
    """One entry of a staff member's ordered deduction list."""

    type: DeductionType
    value: Decimal
    label: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Deduction:
        if not isinstance(data, Mapping):
            raise InvalidRuleError("deduction", data, "must be a mapping")
        value = parse_decimal_field("deduction.value", data.get("value"))
        if value < 0:
            raise InvalidRuleError("deduction.value", data.get("value"), "must not be negative")
        return cls(
            type=parse_enum_field(DeductionType, "deduction.type", data.get("type")),
            value=value,
            label=str(data.get("label") or data.get("name") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "value": str(self.value), "label": self.label}


def parse_deductions(raw: Any) -> tuple[Deduction, ...]:
    """Parse a stored deduction list; None or empty means no deductions."""
    if not raw:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise InvalidRuleError("deductions", raw, "must be a list")
    return tuple(Deduction.from_dict(d) for d in raw)

