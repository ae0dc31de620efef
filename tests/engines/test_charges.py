"""
Tests for the Charge Calculator.

Covers:
- Fixed, subscription and hourly rules
- Custom price and discount
- Custom statuses (including refunds and inactive statuses)
- Free numeric entries priced by the value rule
- ROUND_HALF_UP money rounding
"""

from datetime import date
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from billing_engines.charges import (
    display_price,
    price_manual_entry,
    rule_for_status,
    subscription_daily_rate,
    value_for_manual_input,
    value_for_status,
)
from billing_kernel.domain.calendar import working_days_in_month
from billing_kernel.domain.rules import BillingRuleType
from tests.factories import billing_rules

# February 2026 has 20 working days, January 2026 has 22.
FEB = date(2026, 2, 3)
JAN = date(2026, 1, 6)


class TestValueForStatus:

    def test_fixed_rule(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_status(FEB, "present", rules=rules) == Decimal("100.00")

    def test_fixed_rule_with_discount(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_status(FEB, "present", discount_percent=Decimal("10"), rules=rules) == Decimal("90.00")

    def test_subscription_spread_over_working_days(self):
        rules = billing_rules(present=(2000, "subscription"))

        assert value_for_status(FEB, "present", rules=rules) == Decimal("100.00")
        assert value_for_status(JAN, "present", rules=rules) == Decimal("90.91")

    def test_hourly_with_quantity(self):
        rules = billing_rules(present=(150, "hourly"))
        assert value_for_status(FEB, "present", manual_value_input=Decimal("2"), rules=rules) == Decimal("300.00")

    def test_hourly_without_quantity_charges_the_rate(self):
        rules = billing_rules(present=(150, "hourly"))
        assert value_for_status(FEB, "present", rules=rules) == Decimal("150.00")

    def test_custom_price_overrides_rules(self):
        rules = billing_rules(present=(100, "fixed"))
        charge = value_for_status(
            FEB, "present", custom_price=Decimal("80"), discount_percent=Decimal("25"), rules=rules
        )
        assert charge == Decimal("60.00")

    def test_zero_custom_price_is_an_override(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_status(FEB, "present", custom_price=Decimal("0"), rules=rules) == Decimal("0.00")

    def test_no_status(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_status(FEB, None, rules=rules) is None
        assert value_for_status(FEB, "", rules=rules) is None

    def test_unknown_status(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_status(FEB, "holiday", rules=rules) is None

    def test_no_rules(self):
        assert value_for_status(FEB, "present") is None

    def test_non_positive_base_rate_is_not_billable(self):
        rules = billing_rules(present=(100, "fixed"), sick=(0, "fixed"))
        assert value_for_status(FEB, "sick", rules=rules) is None

    def test_custom_status_refund(self):
        rules = billing_rules(custom_statuses=[
            {"id": "refund", "name": "Refund", "rate": "-50", "type": "fixed"},
        ])
        assert value_for_status(FEB, "refund", rules=rules) == Decimal("-50.00")

    def test_inactive_custom_status_never_matches(self):
        rules = billing_rules(custom_statuses=[
            {"id": "trial", "name": "Trial", "rate": "30", "type": "fixed", "is_active": False},
        ])
        assert value_for_status(FEB, "trial", rules=rules) is None

    def test_base_status_wins_over_custom_status(self):
        rules = billing_rules(
            present=(100, "fixed"),
            custom_statuses=[{"id": "present", "name": "Shadow", "rate": "1", "type": "fixed"}],
        )
        resolved = rule_for_status(rules, "present")
        assert not resolved.is_custom
        assert value_for_status(FEB, "present", rules=rules) == Decimal("100.00")

    def test_half_up_rounding(self):
        rules = billing_rules(present=("10.005", "fixed"))
        assert value_for_status(FEB, "present", rules=rules) == Decimal("10.01")


class TestSubscriptionDailyRate:

    def test_uses_month_of_the_date(self):
        assert subscription_daily_rate(Decimal("2000"), date(2026, 2, 27)) == Decimal("100.00")
        assert subscription_daily_rate(Decimal("2200"), date(2026, 1, 31)) == Decimal("100.00")

    @settings(max_examples=200, deadline=None)
    @given(
        st.integers(min_value=2000, max_value=2100),
        st.integers(min_value=1, max_value=12),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2),
    )
    def test_daily_rate_times_working_days_recovers_the_monthly_rate(self, year, month, rate):
        working_days = working_days_in_month(year, month)

        daily = subscription_daily_rate(rate, date(year, month, 1))

        assert abs(daily * working_days - rate) <= Decimal("0.005") * working_days


class TestValueForManualInput:

    def test_hourly_value_rule(self):
        rules = billing_rules(value=(150, "hourly"))
        assert value_for_manual_input(FEB, Decimal("2"), discount_percent=Decimal("10"), rules=rules) == Decimal("270.00")

    def test_fixed_value_rule(self):
        rules = billing_rules(value=(100, "fixed"))
        assert value_for_manual_input(FEB, Decimal("3"), rules=rules) == Decimal("100.00")

    def test_custom_price(self):
        rules = billing_rules(value=(150, "hourly"))
        assert value_for_manual_input(FEB, Decimal("2"), custom_price=Decimal("40"), rules=rules) == Decimal("40.00")

    def test_no_value_rule(self):
        rules = billing_rules(present=(100, "fixed"))
        assert value_for_manual_input(FEB, Decimal("2"), rules=rules) is None

    def test_zero_rate(self):
        rules = billing_rules(value=(0, "hourly"))
        assert value_for_manual_input(FEB, Decimal("2"), rules=rules) is None

    def test_hourly_without_quantity(self):
        rules = billing_rules(value=(150, "hourly"))
        assert value_for_manual_input(FEB, None, rules=rules) is None


class TestPriceManualEntry:

    def test_hourly_reads_entry_as_quantity(self):
        rules = billing_rules(value=(150, "hourly"))
        price = price_manual_entry(FEB, Decimal("2"), rules=rules)

        assert price.amount == Decimal("300.00")
        assert not price.manual_edit

    def test_matching_amount(self):
        rules = billing_rules(value=(100, "fixed"))
        price = price_manual_entry(FEB, Decimal("100"), rules=rules)

        assert price.amount == Decimal("100.00")
        assert not price.manual_edit

    def test_within_tolerance(self):
        rules = billing_rules(value=(100, "fixed"))
        price = price_manual_entry(FEB, Decimal("100.005"), rules=rules)

        assert price.amount == Decimal("100.00")
        assert not price.manual_edit

    def test_differing_amount_is_a_manual_edit(self):
        rules = billing_rules(value=(100, "fixed"))
        price = price_manual_entry(FEB, Decimal("120"), rules=rules)

        assert price.amount == Decimal("120.00")
        assert price.manual_edit

    def test_unpriceable_entry_stored_as_money(self):
        price = price_manual_entry(FEB, Decimal("75.5"), rules=billing_rules(present=(100, "fixed")))

        assert price.amount == Decimal("75.50")
        assert price.manual_edit


class TestDisplayPrice:

    def test_custom_price_first(self):
        rules = billing_rules(present=(100, "fixed"))
        price = display_price(rules, custom_price=Decimal("80"), discount_percent=Decimal("50"))

        assert price.amount == Decimal("40.00")
        assert price.type == BillingRuleType.FIXED

    def test_present_rule(self):
        price = display_price(billing_rules(present=(150, "hourly")))

        assert price.amount == Decimal("150")
        assert price.per_unit

    def test_unavailable(self):
        assert display_price(billing_rules(sick=(10, "fixed"))) is None
        assert display_price(None) is None
