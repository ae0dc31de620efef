"""
Staff Accrual Calculator.

Pure functions with deterministic behavior. No I/O.

Turns the present attendance marks of a billing period into what each staff
member earns per day.  Which staff member (and which rule) is responsible
for an activity on a date is decided by a caller-supplied lookup, normally
``rule_lookup(staff_rules)``.

Contribution per (activity, date) group of present marks, by rate type:

    per_session   rate x number of present marks
    per_student   rate x number of present marks
    fixed         rate, once per staff member and date
    percent       rate% x sum of the marks' money values
    subscription  per-student monthly state machine (below)

Subscription (keyed by staff, rule, student and calendar month, processed
in date order):

    threshold   = ceil(lesson_limit x penalty_trigger_percent / 100)
                  (0 when there is no lesson limit)
    minimum     = max(0, rate x (1 - penalty_percent / 100))
    remainder   = rate - minimum

    1st lesson of the month          -> minimum
    lesson count reaches threshold   -> remainder, once
    lesson count exceeds the limit   -> extra_lesson_rate per lesson

So a student who stops early leaves the staff member with the penalised
minimum, and one who attends past the trigger earns the full rate.  The
phases UNDER_LIMIT -> AT_LIMIT -> OVER_LIMIT only ever move forward within
a month.

Marks with no applicable rule contribute nothing and produce no entry.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.db.types import HUNDRED, ZERO, round_money
from billing_kernel.domain.dtos import AttendanceRecord
from billing_kernel.domain.rules import StaffBillingRule, StaffRateType
from billing_kernel.logging_config import get_logger
from billing_engines.rule_index import responsible_staff_rule

logger = get_logger("engines.staff_accrual")

RuleForDate = Callable[[UUID, date], StaffBillingRule | None]


class SubscriptionPhase(str, Enum):
    UNDER_LIMIT = "under_limit"
    AT_LIMIT = "at_limit"
    OVER_LIMIT = "over_limit"


def subscription_phase(count: int, lesson_limit: int | None) -> SubscriptionPhase:
    """Phase after ``count`` lessons; without a limit a student is never over."""
    if not lesson_limit or lesson_limit <= 0 or count < lesson_limit:
        return SubscriptionPhase.UNDER_LIMIT
    if count == lesson_limit:
        return SubscriptionPhase.AT_LIMIT
    return SubscriptionPhase.OVER_LIMIT


@dataclass
class _SubscriptionState:
    count: int = 0
    minimum_charged: bool = False
    threshold_charged: bool = False


@dataclass
class DailyAccrual:
    """What one staff member earned on one date, with the reasons why."""

    amount: Decimal = ZERO
    notes: list[str] = field(default_factory=list)

    def add(self, amount: Decimal, notes: Iterable[str]) -> None:
        self.amount += amount
        self.notes.extend(notes)


Accruals = dict[UUID, dict[date, DailyAccrual]]


def _add(accruals: Accruals, staff_id: UUID, on_date: date, amount: Decimal, notes: list[str]) -> None:
    accruals.setdefault(staff_id, {}).setdefault(on_date, DailyAccrual()).add(amount, notes)


def _money_basis(record: AttendanceRecord) -> Decimal:
    if record.value is not None:
        return record.value
    return record.charged_amount or ZERO


def _subscription_terms(rule: StaffBillingRule) -> tuple[int, int, Decimal, Decimal, Decimal]:
    limit = rule.lesson_limit or 0
    trigger = rule.penalty_trigger_percent or ZERO
    penalty = rule.penalty_percent or ZERO
    threshold = math.ceil(limit * trigger / HUNDRED) if limit > 0 else 0
    minimum = max(ZERO, round_money(rule.rate * (1 - penalty / HUNDRED)))
    remainder = max(ZERO, rule.rate - minimum)
    extra = rule.extra_lesson_rate or ZERO
    return limit, threshold, minimum, remainder, extra


def compute_monthly_accruals(
    attendance_records: Iterable[AttendanceRecord],
    rule_for_date: RuleForDate,
    student_names: Mapping[UUID, str] | None = None,
) -> Accruals:
    """
    Per-staff, per-date accruals for a period's attendance.

    Args:
        attendance_records: Marks of the period; only ``present`` ones count.
        rule_for_date: ``(activity_id, date) -> StaffBillingRule | None``.
        student_names: Optional names used in subscription notes.

    Returns:
        ``{staff_id: {date: DailyAccrual}}``.  Only non-zero contributions
        create entries.
    """
    names = student_names or {}
    groups: dict[tuple[date, UUID], list[AttendanceRecord]] = defaultdict(list)
    for record in attendance_records:
        if record.is_present:
            groups[(record.date, record.activity_id)].append(record)

    accruals: Accruals = {}
    fixed_paid: set[tuple[UUID, date]] = set()
    subscriptions: dict[tuple, _SubscriptionState] = {}

    for on_date, activity_id in sorted(groups, key=lambda k: (k[0], str(k[1]))):
        day_records = groups[(on_date, activity_id)]
        rule = rule_for_date(activity_id, on_date)
        if rule is None:
            logger.debug(
                "accrual_rule_missing",
                extra={"on_date": on_date, "activity_id": activity_id},
            )
            continue

        count = len(day_records)
        staff_id = rule.staff_id

        if rule.rate_type == StaffRateType.PER_SESSION:
            amount = round_money(rule.rate * count)
            if amount:
                _add(accruals, staff_id, on_date, amount, [f"Per session: {count} x {rule.rate}"])

        elif rule.rate_type == StaffRateType.PER_STUDENT:
            amount = round_money(rule.rate * count)
            if amount:
                _add(accruals, staff_id, on_date, amount, [f"Per student: {count} marks x {rule.rate}"])

        elif rule.rate_type == StaffRateType.FIXED:
            if (staff_id, on_date) not in fixed_paid and rule.rate:
                fixed_paid.add((staff_id, on_date))
                _add(accruals, staff_id, on_date, round_money(rule.rate), [f"Fixed: {on_date.isoformat()}"])

        elif rule.rate_type == StaffRateType.PERCENT:
            basis = sum((_money_basis(r) for r in day_records), ZERO)
            amount = round_money(rule.rate * basis / HUNDRED)
            if amount:
                _add(
                    accruals, staff_id, on_date, amount,
                    [f"Percent: {rule.rate}% of {round_money(basis)}"],
                )

        elif rule.rate_type == StaffRateType.SUBSCRIPTION:
            _accrue_subscription(accruals, subscriptions, rule, on_date, day_records, names)

    logger.debug(
        "monthly_accruals_computed",
        extra={
            "staff_count": len(accruals),
            "entry_count": sum(len(days) for days in accruals.values()),
        },
    )
    return accruals


def _accrue_subscription(
    accruals: Accruals,
    states: dict[tuple, _SubscriptionState],
    rule: StaffBillingRule,
    on_date: date,
    day_records: Sequence[AttendanceRecord],
    names: Mapping[UUID, str],
) -> None:
    limit, threshold, minimum, remainder, extra = _subscription_terms(rule)

    for record in sorted(day_records, key=lambda r: (str(r.student_id), str(r.enrollment_id))):
        key = (rule.staff_id, rule.id, record.student_id, on_date.year, on_date.month)
        state = states.setdefault(key, _SubscriptionState())
        state.count += 1
        who = names.get(record.student_id, "student")
        amount = ZERO
        notes: list[str] = []

        if not state.minimum_charged:
            state.minimum_charged = True
            amount += minimum
            notes.append(f"Subscription ({who}): first lesson (minimum)")

        if not state.threshold_charged and threshold > 0 and state.count >= threshold:
            state.threshold_charged = True
            amount += remainder
            notes.append(f"Subscription ({who}): threshold reached")

        if subscription_phase(state.count, limit) == SubscriptionPhase.OVER_LIMIT and extra > 0:
            amount += extra
            notes.append(f"Subscription ({who}): over limit")

        if amount > 0:
            _add(accruals, rule.staff_id, on_date, round_money(amount), notes)


def rule_lookup(staff_rules: Sequence[StaffBillingRule]) -> RuleForDate:
    """
    A memoised ``(activity_id, date) -> rule`` lookup over a rule set, using
    the responsible-staff resolution of the rule index.
    """
    cache: dict[tuple[UUID, date], StaffBillingRule | None] = {}
    rules = tuple(staff_rules)

    def lookup(activity_id: UUID, on_date: date) -> StaffBillingRule | None:
        key = (activity_id, on_date)
        if key not in cache:
            cache[key] = responsible_staff_rule(rules, activity_id, on_date)
        return cache[key]

    return lookup
