"""
Garden (controller) Accrual Calculator.

Pure functions with deterministic behavior. No I/O.

A controller activity carries no price of its own.  Its config links base
tariff activities (monthly fees) and food tariff activities (daily meals).
One attendance mark against the controller turns into:

    base tariffs   billed on every marked day, whatever the status:
                   daily = monthly / working days of the month
    food tariffs   refunded (credited back) only when the child is absent

Monthly base tariff, first match wins:
    1. the enrollment's custom price, when positive
    2. the ``present`` rule of the tariff activity (fixed or subscription),
       taken from the price history record covering the date
    3. the tariff activity's default price
Daily food tariff, first match wins:
    1. the enrollment's custom price, when positive
    2. the ``present`` rule: fixed -> rate, subscription -> rate / working days
    3. the tariff activity's default price
The enrollment discount applies to each daily figure, rounded to cents.

Day amount:
    present          sum of base daily tariffs
    absent           sum of base daily tariffs - sum of food daily tariffs
    any other status sum of base daily tariffs

``daily_accrual`` returns None ("cannot compute") when the controller or its
config is missing or no base tariff resolves.  Callers must not read that
as a zero charge.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence
from uuid import UUID

from billing_kernel.db.types import ZERO, discount_factor, round_money
from billing_kernel.domain.calendar import working_days_for
from billing_kernel.domain.dtos import ActivityInfo, ControllerConfig, EnrollmentInfo
from billing_kernel.domain.rules import BillingRuleType, PriceHistoryRecord
from billing_kernel.logging_config import get_logger
from billing_engines.charges import subscription_daily_rate
from billing_engines.rule_index import billing_rules_for_date

logger = get_logger("engines.garden")

ABSENT = "absent"


class TariffKind(str, Enum):
    BASE = "base"
    FOOD = "food"


class GardenTransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


CATEGORY_BASE = "garden_base_tariff"
CATEGORY_FOOD_REFUND = "garden_food_refund"


@dataclass(frozen=True)
class TariffLine:
    activity_id: UUID
    enrollment_id: UUID
    kind: TariffKind
    daily: Decimal
    monthly: Decimal | None = None


@dataclass(frozen=True)
class GardenAccrual:
    amount: Decimal
    base_tariffs: tuple[TariffLine, ...]
    food_tariffs: tuple[TariffLine, ...]
    working_days: int
    status: str | None

    @property
    def base_daily_total(self) -> Decimal:
        return sum((t.daily for t in self.base_tariffs), ZERO)

    @property
    def food_tariff(self) -> Decimal:
        """Total daily food tariff."""
        return sum((t.daily for t in self.food_tariffs), ZERO)


def _present_rule(activity: ActivityInfo, on_date: date, history: Sequence[PriceHistoryRecord]):
    rules = billing_rules_for_date(activity.billing_rules, history, on_date)
    rule = rules.statuses.get("present")
    if rule is None or rule.rate <= 0:
        return None
    return rule


def _base_monthly(
    enrollment: EnrollmentInfo,
    activity: ActivityInfo,
    on_date: date,
    history: Sequence[PriceHistoryRecord],
) -> Decimal | None:
    if enrollment.custom_price is not None and enrollment.custom_price > 0:
        return enrollment.custom_price
    rule = _present_rule(activity, on_date, history)
    if rule is not None and rule.type in (BillingRuleType.FIXED, BillingRuleType.SUBSCRIPTION):
        return rule.rate
    return activity.default_price


def _food_daily(
    enrollment: EnrollmentInfo,
    activity: ActivityInfo,
    on_date: date,
    history: Sequence[PriceHistoryRecord],
) -> Decimal | None:
    if enrollment.custom_price is not None and enrollment.custom_price > 0:
        return enrollment.custom_price
    rule = _present_rule(activity, on_date, history)
    if rule is not None:
        if rule.type == BillingRuleType.FIXED:
            return rule.rate
        if rule.type == BillingRuleType.SUBSCRIPTION:
            return subscription_daily_rate(rule.rate, on_date)
    return activity.default_price


def daily_accrual(
    student_id: UUID,
    on_date: date,
    controller_activity_id: UUID,
    student_enrollments: Sequence[EnrollmentInfo],
    activities_by_id: Mapping[UUID, ActivityInfo],
    status: str | None,
    price_histories: Mapping[UUID, Sequence[PriceHistoryRecord]] | None = None,
) -> GardenAccrual | None:
    """
    The controller accrual for one student and date.

    Args:
        student_id: The child.
        on_date: Date of the mark.
        controller_activity_id: The controller (garden journal) activity.
        student_enrollments: Enrollments to search; only active ones of
            this student count.
        activities_by_id: Controller and tariff activities.
        status: The mark's status.
        price_histories: Optional price history per tariff activity.

    Returns:
        GardenAccrual, or None when it cannot be computed.
    """
    controller = activities_by_id.get(controller_activity_id)
    config = controller.controller_config if controller is not None else None
    if config is None:
        logger.debug(
            "garden_config_missing",
            extra={"controller_activity_id": controller_activity_id},
        )
        return None

    histories = price_histories or {}
    working_days = working_days_for(on_date)
    enrollments = [
        e for e in student_enrollments
        if e.student_id == student_id and e.is_active
    ]

    base_lines: list[TariffLine] = []
    for enrollment in enrollments:
        if enrollment.activity_id not in config.base_tariff_ids:
            continue
        activity = activities_by_id.get(enrollment.activity_id)
        if activity is None:
            continue
        history = histories.get(activity.id, ())
        monthly = _base_monthly(enrollment, activity, on_date, history)
        if monthly is None:
            continue
        daily = round_money(
            subscription_daily_rate(monthly, on_date)
            * discount_factor(enrollment.discount_percent)
        )
        base_lines.append(
            TariffLine(
                activity_id=activity.id,
                enrollment_id=enrollment.id,
                kind=TariffKind.BASE,
                daily=daily,
                monthly=monthly,
            )
        )

    if not base_lines:
        logger.debug(
            "garden_base_tariff_unresolved",
            extra={"student_id": student_id, "on_date": on_date},
        )
        return None

    food_lines: list[TariffLine] = []
    for enrollment in enrollments:
        if enrollment.activity_id not in config.food_tariff_ids:
            continue
        activity = activities_by_id.get(enrollment.activity_id)
        if activity is None:
            continue
        food = _food_daily(enrollment, activity, on_date, histories.get(activity.id, ()))
        if food is None:
            continue
        food_lines.append(
            TariffLine(
                activity_id=activity.id,
                enrollment_id=enrollment.id,
                kind=TariffKind.FOOD,
                daily=round_money(food * discount_factor(enrollment.discount_percent)),
            )
        )

    base_total = sum((t.daily for t in base_lines), ZERO)
    if status == ABSENT:
        amount = base_total - sum((t.daily for t in food_lines), ZERO)
    else:
        amount = base_total

    accrual = GardenAccrual(
        amount=round_money(amount),
        base_tariffs=tuple(base_lines),
        food_tariffs=tuple(food_lines),
        working_days=working_days,
        status=status,
    )
    logger.debug(
        "garden_accrual_calculated",
        extra={
            "student_id": student_id,
            "on_date": on_date,
            "status": status,
            "amount": accrual.amount,
        },
    )
    return accrual


# ---------------------------------------------------------------------------
# Transaction plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionKey:
    """Identity of a garden transaction: one per student, tariff, date and type."""

    student_id: UUID
    activity_id: UUID
    date: date
    type: GardenTransactionType


@dataclass(frozen=True)
class PlannedTransaction:
    key: TransactionKey
    amount: Decimal
    description: str
    category: str


@dataclass(frozen=True)
class TransactionPlan:
    upserts: tuple[PlannedTransaction, ...] = ()
    deletes: tuple[TransactionKey, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.upserts and not self.deletes


def plan_garden_transactions(
    student_id: UUID,
    on_date: date,
    status: str | None,
    config: ControllerConfig,
    accrual: GardenAccrual | None,
    activity_names: Mapping[UUID, str] | None = None,
) -> TransactionPlan:
    """
    Finance transactions to upsert and delete for one controller mark.

    - Cleared mark: delete every garden transaction of the student and date.
    - Base tariff charges (income) are upserted for any status.
    - Food refunds (expense) are upserted only for ``absent``; for any
      other status existing refunds are deleted.
    - Tariffs configured on the controller but absent from the accrual
      (no enrollment) have their rows deleted.
    - Cannot-compute (``accrual`` None with a status) plans nothing.
    """
    names = activity_names or {}

    def key(activity_id: UUID, kind: GardenTransactionType) -> TransactionKey:
        return TransactionKey(student_id, activity_id, on_date, kind)

    if status is None:
        return TransactionPlan(
            deletes=tuple(
                [key(a, GardenTransactionType.INCOME) for a in config.base_tariff_ids]
                + [key(a, GardenTransactionType.EXPENSE) for a in config.food_tariff_ids]
            )
        )
    if accrual is None:
        return TransactionPlan()

    upserts: list[PlannedTransaction] = []
    deletes: list[TransactionKey] = []

    charged = set()
    for line in accrual.base_tariffs:
        if line.daily <= 0:
            continue
        charged.add(line.activity_id)
        upserts.append(
            PlannedTransaction(
                key=key(line.activity_id, GardenTransactionType.INCOME),
                amount=line.daily,
                description=f"Base tariff: {names.get(line.activity_id, line.activity_id)}",
                category=CATEGORY_BASE,
            )
        )
    deletes.extend(
        key(a, GardenTransactionType.INCOME)
        for a in config.base_tariff_ids
        if a not in charged
    )

    refunded = set()
    if status == ABSENT:
        for line in accrual.food_tariffs:
            if line.daily <= 0:
                continue
            refunded.add(line.activity_id)
            upserts.append(
                PlannedTransaction(
                    key=key(line.activity_id, GardenTransactionType.EXPENSE),
                    amount=line.daily,
                    description=f"Food refund: {names.get(line.activity_id, line.activity_id)}",
                    category=CATEGORY_FOOD_REFUND,
                )
            )
    deletes.extend(
        key(a, GardenTransactionType.EXPENSE)
        for a in config.food_tariff_ids
        if a not in refunded
    )

    return TransactionPlan(upserts=tuple(upserts), deletes=tuple(deletes))
