"""
Billing Engines -- pure calculation functions.

No I/O, no ORM.  Inputs and outputs are domain DTOs from
``billing_kernel.domain``.
"""

from billing_engines.charges import (
    display_price,
    price_manual_entry,
    subscription_daily_rate,
    value_for_manual_input,
    value_for_status,
)
from billing_engines.deductions import DeductionResult, apply_deductions
from billing_engines.garden import (
    GardenAccrual,
    TransactionPlan,
    daily_accrual,
    plan_garden_transactions,
)
from billing_engines.group_lessons import (
    GroupLessonAccrual,
    group_lesson_accruals,
    group_lesson_amount,
)
from billing_engines.manual_rates import manual_accrual, manual_rate_for_date
from billing_engines.rule_index import (
    RuleIntervalIndex,
    assert_disjoint,
    billing_rules_for_date,
    covers,
    find_overlaps,
    resolve,
    resolve_scoped,
    responsible_staff_rule,
)
from billing_engines.staff_accrual import (
    DailyAccrual,
    compute_monthly_accruals,
    rule_lookup,
)

__all__ = [
    "DailyAccrual",
    "DeductionResult",
    "GardenAccrual",
    "GroupLessonAccrual",
    "RuleIntervalIndex",
    "TransactionPlan",
    "apply_deductions",
    "assert_disjoint",
    "billing_rules_for_date",
    "compute_monthly_accruals",
    "covers",
    "daily_accrual",
    "display_price",
    "find_overlaps",
    "group_lesson_accruals",
    "group_lesson_amount",
    "manual_accrual",
    "manual_rate_for_date",
    "plan_garden_transactions",
    "price_manual_entry",
    "resolve",
    "resolve_scoped",
    "responsible_staff_rule",
    "rule_lookup",
    "subscription_daily_rate",
    "value_for_manual_input",
    "value_for_status",
]
