"""
Charge Calculator.

Pure functions with deterministic behavior. No I/O.

Converts an attendance mark (a status, or a free numeric entry) plus the
billing rules effective on the mark's date into the amount charged to the
family.

Pricing order for a status:
    1. ``custom_price`` on the enrollment overrides every rule:
       ``custom_price x (1 - discount/100)``.
    2. The rule for the status: a base status (present, sick, absent,
       vacation) first, then an active custom status with that id.
    3. By rule type:
       - fixed:        ``rate``
       - subscription: ``rate / working_days(month of date)``, rounded
       - hourly:       ``rate x quantity`` when a quantity is given, else
                       ``rate``
    4. The discount multiplier, rounded.

Money is rounded to cents (ROUND_HALF_UP) after each multiplication step
above, not only at the end.

A base-status rule with ``rate <= 0`` is not billable and yields None.
Custom statuses may carry negative rates (refunds).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_kernel.db.types import ZERO, discount_factor, round_money, to_decimal
from billing_kernel.domain.calendar import working_days_for
from billing_kernel.domain.rules import (
    BASE_STATUSES,
    BillingRule,
    BillingRules,
    BillingRuleType,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.charges")


@dataclass(frozen=True)
class ResolvedRule:
    """The rule a status resolved to, and whether it came from a custom status."""

    rule: BillingRule
    is_custom: bool = False


@dataclass(frozen=True)
class ManualEntryPrice:
    """
    How a free numeric entry is stored.

    ``amount`` is the money figure for the mark; ``manual_edit`` is True
    when the figure was typed in rather than derived from a rule.
    """

    amount: Decimal
    manual_edit: bool


@dataclass(frozen=True)
class DisplayPrice:
    amount: Decimal
    type: BillingRuleType
    per_unit: bool = False


def rule_for_status(rules: BillingRules | None, status: str | None) -> ResolvedRule | None:
    """Base statuses first, then active custom statuses by id."""
    if rules is None or not status:
        return None
    rule = rules.statuses.get(status)
    if rule is not None:
        return ResolvedRule(rule=rule)
    custom = rules.custom_status(status)
    if custom is not None:
        return ResolvedRule(rule=custom.rule, is_custom=True)
    return None


def subscription_daily_rate(rate: Decimal, on_date: date) -> Decimal:
    """A monthly rate spread over the working days of the month of ``on_date``."""
    working_days = working_days_for(on_date)
    if working_days <= 0:
        return ZERO
    return round_money(to_decimal(rate) / working_days)


def _base_value(rule: BillingRule, on_date: date, quantity: Decimal | None) -> Decimal | None:
    if rule.type == BillingRuleType.FIXED:
        return rule.rate
    if rule.type == BillingRuleType.SUBSCRIPTION:
        return subscription_daily_rate(rule.rate, on_date)
    if rule.type == BillingRuleType.HOURLY:
        if quantity is not None and quantity > 0:
            return round_money(rule.rate * quantity)
        return rule.rate
    return None


def value_for_status(
    on_date: date,
    status: str | None,
    manual_value_input: Decimal | None = None,
    custom_price: Decimal | None = None,
    discount_percent: Decimal | None = None,
    rules: BillingRules | None = None,
) -> Decimal | None:
    """
    Amount charged for ``status`` on ``on_date``.

    Args:
        on_date: Date of the mark; selects the month for subscription math.
        status: Base status key or custom status id.  None means no mark.
        manual_value_input: Quantity for hourly rules.
        custom_price: Enrollment price override (0 is a valid override).
        discount_percent: Enrollment discount, 0-100.
        rules: Billing rules effective on ``on_date``.

    Returns:
        The charge rounded to cents, or None when nothing is billable.
    """
    if not status:
        return None

    factor = discount_factor(discount_percent)

    if custom_price is not None:
        charge = round_money(to_decimal(custom_price) * factor)
        logger.debug(
            "charge_from_custom_price",
            extra={"on_date": on_date, "status": status, "charge": charge},
        )
        return charge

    resolved = rule_for_status(rules, status)
    if resolved is None:
        return None
    if not resolved.is_custom and resolved.rule.rate <= 0:
        return None

    base = _base_value(resolved.rule, on_date, manual_value_input)
    if base is None:
        return None

    charge = round_money(base * factor)
    logger.debug(
        "charge_calculated",
        extra={
            "on_date": on_date,
            "status": status,
            "rule_type": resolved.rule.type.value,
            "rate": resolved.rule.rate,
            "charge": charge,
        },
    )
    return charge


def value_for_manual_input(
    on_date: date,
    quantity: Decimal | None,
    custom_price: Decimal | None = None,
    discount_percent: Decimal | None = None,
    rules: BillingRules | None = None,
) -> Decimal | None:
    """
    Amount for a free numeric entry, priced by the generic ``value`` rule.

    - custom price:  ``custom_price x (1 - d)``
    - hourly rule:   ``quantity x rate x (1 - d)`` when quantity > 0
    - fixed rule:    ``rate x (1 - d)``
    A missing rule or ``rate <= 0`` yields None.
    """
    factor = discount_factor(discount_percent)
    if custom_price is not None:
        return round_money(to_decimal(custom_price) * factor)

    rule = rules.value_rule if rules is not None else None
    if rule is None or rule.rate <= 0:
        return None

    if rule.type == BillingRuleType.HOURLY and quantity is not None and quantity > 0:
        return round_money(rule.rate * quantity * factor)
    if rule.type == BillingRuleType.FIXED:
        return round_money(rule.rate * factor)
    return None


def price_manual_entry(
    on_date: date,
    entered: Decimal,
    custom_price: Decimal | None = None,
    discount_percent: Decimal | None = None,
    rules: BillingRules | None = None,
    tolerance: Decimal = Decimal("0.01"),
) -> ManualEntryPrice:
    """
    Decide what a free numeric entry stores.

    An hourly ``value`` rule reads the entry as a quantity and stores the
    priced amount.  Otherwise the entry is read as an amount: if it matches
    the rule-derived amount within ``tolerance`` the derived amount is
    stored; if it differs, or nothing can price it, the entered figure is
    stored and flagged as a manual edit.
    """
    rule = rules.value_rule if rules is not None else None
    priced = value_for_manual_input(on_date, entered, custom_price, discount_percent, rules)

    if priced is None:
        return ManualEntryPrice(amount=round_money(entered), manual_edit=True)

    reads_as_quantity = (
        custom_price is None
        and rule is not None
        and rule.type == BillingRuleType.HOURLY
    )
    if reads_as_quantity:
        return ManualEntryPrice(amount=priced, manual_edit=False)

    if abs(priced - entered) > tolerance:
        return ManualEntryPrice(amount=round_money(entered), manual_edit=True)
    return ManualEntryPrice(amount=priced, manual_edit=False)


def display_price(
    rules: BillingRules | None,
    custom_price: Decimal | None = None,
    discount_percent: Decimal | None = None,
) -> DisplayPrice | None:
    """
    Representative price of an enrollment: the custom price (discounted)
    when set and positive, else the ``present`` rule's rate.  Hourly rates
    are flagged ``per_unit``.
    """
    if custom_price is not None and custom_price > 0:
        return DisplayPrice(
            amount=round_money(to_decimal(custom_price) * discount_factor(discount_percent)),
            type=BillingRuleType.FIXED,
        )
    if rules is None:
        return None
    present = rules.statuses.get(BASE_STATUSES[0])
    if present is None or present.rate <= 0:
        return None
    return DisplayPrice(
        amount=present.rate,
        type=present.type,
        per_unit=present.type == BillingRuleType.HOURLY,
    )
