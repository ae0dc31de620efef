"""
Group lesson accruals.

Pure functions with deterministic behavior. No I/O.

A group lesson is taught by one or more staff members; what each earns on
a date depends on the number of sessions held and the staff member's rule
for the lesson's activity (activity-specific beats global):

    per_session, per_student   rate x sessions
    fixed                      rate, when at least one session was held
    percent, subscription      not paid through group lessons
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.dtos import GroupLessonInfo
from billing_kernel.domain.rules import StaffBillingRule, StaffRateType
from billing_kernel.logging_config import get_logger
from billing_engines.rule_index import resolve_scoped

logger = get_logger("engines.group_lessons")


@dataclass(frozen=True)
class GroupLessonAccrual:
    staff_id: UUID
    rule: StaffBillingRule
    amount: Decimal
    note: str


def group_lesson_amount(rule: StaffBillingRule, sessions_count: int) -> Decimal | None:
    """Gross amount for ``sessions_count`` sessions; None for rate types that do not apply."""
    if rule.rate_type in (StaffRateType.PER_SESSION, StaffRateType.PER_STUDENT):
        return round_money(rule.rate * sessions_count)
    if rule.rate_type == StaffRateType.FIXED:
        return round_money(rule.rate) if sessions_count > 0 else ZERO
    return None


def group_lesson_note(lesson_name: str, sessions_count: int) -> str:
    return f"Group lesson: {lesson_name} x {sessions_count}"


def group_lesson_accruals(
    lesson: GroupLessonInfo,
    on_date: date,
    sessions_count: int,
    rules_by_staff: Mapping[UUID, Sequence[StaffBillingRule]],
) -> dict[UUID, GroupLessonAccrual]:
    """
    What each of the lesson's staff members earns on ``on_date``.

    Staff members with no applicable rule, or whose amount is not positive,
    are left out.
    """
    accruals: dict[UUID, GroupLessonAccrual] = {}
    for staff_id in lesson.staff_ids:
        rule = resolve_scoped(rules_by_staff.get(staff_id, ()), on_date, lesson.activity_id)
        if rule is None:
            logger.debug(
                "group_lesson_rule_missing",
                extra={"staff_id": staff_id, "group_lesson_id": lesson.id, "on_date": on_date},
            )
            continue
        amount = group_lesson_amount(rule, sessions_count)
        if amount is None or amount <= 0:
            continue
        accruals[staff_id] = GroupLessonAccrual(
            staff_id=staff_id,
            rule=rule,
            amount=amount,
            note=group_lesson_note(lesson.name, sessions_count),
        )
    return accruals
