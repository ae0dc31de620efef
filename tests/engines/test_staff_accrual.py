"""
Tests for the Staff Accrual Calculator.

Covers:
- per_session / per_student / fixed / percent rate types
- Subscription state machine: minimum, threshold remainder, over-limit extras
- Monthly reset of subscription state
- Marks without an applicable rule
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from billing_engines.staff_accrual import (
    SubscriptionPhase,
    compute_monthly_accruals,
    rule_lookup,
    subscription_phase,
)
from tests.factories import mark, staff_rule

ACTIVITY = uuid4()
OTHER_ACTIVITY = uuid4()
STAFF = uuid4()
MON = date(2026, 2, 2)


def lookup_for(*rules):
    return rule_lookup(list(rules))


class TestSimpleRateTypes:

    def test_per_session_counts_present_marks(self):
        records = [mark(ACTIVITY, MON) for _ in range(3)] + [mark(ACTIVITY, MON, status="absent")]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "per_session", 50)))

        day = accruals[STAFF][MON]
        assert day.amount == Decimal("150.00")
        assert day.notes == ["Per session: 3 x 50"]

    def test_per_student(self):
        records = [mark(ACTIVITY, MON) for _ in range(2)]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "per_student", 40)))

        assert accruals[STAFF][MON].amount == Decimal("80.00")

    def test_fixed_once_per_staff_and_date(self):
        records = [
            mark(ACTIVITY, MON),
            mark(ACTIVITY, MON),
            mark(OTHER_ACTIVITY, MON),
            mark(ACTIVITY, MON + timedelta(days=1)),
        ]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "fixed", 500)))

        assert accruals[STAFF][MON].amount == Decimal("500.00")
        assert accruals[STAFF][MON + timedelta(days=1)].amount == Decimal("500.00")

    def test_percent_of_money_values(self):
        records = [
            mark(ACTIVITY, MON, charged_amount=Decimal("100")),
            mark(ACTIVITY, MON, charged_amount=Decimal("200")),
        ]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "percent", 10)))

        assert accruals[STAFF][MON].amount == Decimal("30.00")

    def test_percent_prefers_value_over_charge(self):
        records = [mark(ACTIVITY, MON, value=Decimal("50"), charged_amount=Decimal("100"))]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "percent", 10)))

        assert accruals[STAFF][MON].amount == Decimal("5.00")

    def test_zero_contribution_creates_no_entry(self):
        records = [mark(ACTIVITY, MON, charged_amount=Decimal("0"))]
        accruals = compute_monthly_accruals(records, lookup_for(staff_rule(STAFF, "percent", 10)))

        assert accruals == {}

    def test_no_rule_no_entry(self):
        accruals = compute_monthly_accruals([mark(ACTIVITY, MON)], lambda activity_id, on_date: None)
        assert accruals == {}

    def test_rule_resolved_per_date(self):
        early = staff_rule(STAFF, "per_session", 50, effective_to=date(2026, 2, 3))
        late = staff_rule(STAFF, "per_session", 70, effective_from=date(2026, 2, 3))
        records = [mark(ACTIVITY, MON), mark(ACTIVITY, date(2026, 2, 3))]

        accruals = compute_monthly_accruals(records, lookup_for(early, late))

        assert accruals[STAFF][MON].amount == Decimal("50.00")
        assert accruals[STAFF][date(2026, 2, 3)].amount == Decimal("70.00")

    def test_activity_rule_goes_to_activity_owner(self):
        owner = uuid4()
        records = [mark(ACTIVITY, MON), mark(OTHER_ACTIVITY, MON)]
        lookup = lookup_for(
            staff_rule(owner, "per_session", 100, activity_id=ACTIVITY),
            staff_rule(STAFF, "per_session", 10),
        )

        accruals = compute_monthly_accruals(records, lookup)

        assert accruals[owner][MON].amount == Decimal("100.00")
        assert accruals[STAFF][MON].amount == Decimal("10.00")


def subscription(rate=1000, limit=8, trigger=50, penalty=30, extra=100):
    return staff_rule(
        STAFF,
        "subscription",
        rate,
        lesson_limit=limit,
        penalty_trigger_percent=Decimal(trigger),
        penalty_percent=Decimal(penalty),
        extra_lesson_rate=Decimal(extra),
    )


def lessons(student_id, count, start=MON, activity_id=ACTIVITY):
    return [mark(activity_id, start + timedelta(days=i), student_id=student_id) for i in range(count)]


class TestSubscription:

    def test_phases(self):
        assert subscription_phase(3, 8) == SubscriptionPhase.UNDER_LIMIT
        assert subscription_phase(8, 8) == SubscriptionPhase.AT_LIMIT
        assert subscription_phase(9, 8) == SubscriptionPhase.OVER_LIMIT
        assert subscription_phase(100, None) == SubscriptionPhase.UNDER_LIMIT

    def test_first_lesson_pays_minimum(self):
        student = uuid4()
        accruals = compute_monthly_accruals(lessons(student, 1), lookup_for(subscription()))

        assert accruals[STAFF][MON].amount == Decimal("700.00")

    def test_threshold_pays_remainder_once(self):
        student = uuid4()
        accruals = compute_monthly_accruals(lessons(student, 8), lookup_for(subscription()))

        days = accruals[STAFF]
        assert days[MON].amount == Decimal("700.00")
        assert days[MON + timedelta(days=3)].amount == Decimal("300.00")
        assert len(days) == 2
        assert sum(d.amount for d in days.values()) == Decimal("1000.00")

    def test_over_limit_pays_extra_per_lesson(self):
        student = uuid4()
        accruals = compute_monthly_accruals(lessons(student, 10), lookup_for(subscription()))

        days = accruals[STAFF]
        assert days[MON + timedelta(days=8)].amount == Decimal("100.00")
        assert days[MON + timedelta(days=9)].amount == Decimal("100.00")
        assert sum(d.amount for d in days.values()) == Decimal("1200.00")

    def test_students_are_tracked_separately(self):
        a, b = uuid4(), uuid4()
        records = lessons(a, 1) + lessons(b, 1)
        accruals = compute_monthly_accruals(
            records, lookup_for(subscription()), student_names={a: "Ann", b: "Ben"}
        )

        day = accruals[STAFF][MON]
        assert day.amount == Decimal("1400.00")
        assert any("Ann" in note for note in day.notes)
        assert any("Ben" in note for note in day.notes)

    def test_state_resets_each_month(self):
        student = uuid4()
        records = lessons(student, 1, start=date(2026, 1, 30)) + lessons(student, 1, start=date(2026, 2, 2))
        accruals = compute_monthly_accruals(records, lookup_for(subscription()))

        assert accruals[STAFF][date(2026, 1, 30)].amount == Decimal("700.00")
        assert accruals[STAFF][date(2026, 2, 2)].amount == Decimal("700.00")

    def test_input_order_does_not_matter(self):
        student = uuid4()
        records = lessons(student, 5)
        forward = compute_monthly_accruals(records, lookup_for(subscription()))
        backward = compute_monthly_accruals(list(reversed(records)), lookup_for(subscription()))

        assert {d: a.amount for d, a in forward[STAFF].items()} == {
            d: a.amount for d, a in backward[STAFF].items()
        }


class TestSubscriptionProperties:

    @settings(max_examples=100, deadline=None)
    @given(
        limit=st.integers(min_value=1, max_value=20),
        trigger=st.integers(min_value=1, max_value=100),
        penalty=st.integers(min_value=0, max_value=100),
        rate=st.integers(min_value=0, max_value=5000),
        data=st.data(),
    )
    def test_attending_up_to_the_limit_earns_the_full_rate(self, limit, trigger, penalty, rate, data):
        threshold = -(-limit * trigger // 100)
        count = data.draw(st.integers(min_value=threshold, max_value=limit))
        student = uuid4()
        rule = subscription(rate=rate, limit=limit, trigger=trigger, penalty=penalty, extra=0)

        accruals = compute_monthly_accruals(
            lessons(student, count, start=date(2026, 3, 1)), lookup_for(rule)
        )

        total = sum((d.amount for d in accruals.get(STAFF, {}).values()), Decimal("0"))
        assert total == Decimal(rate)

    @settings(max_examples=100, deadline=None)
    @given(
        limit=st.integers(min_value=2, max_value=20),
        penalty=st.integers(min_value=0, max_value=100),
        rate=st.integers(min_value=0, max_value=5000),
    )
    def test_stopping_before_the_threshold_earns_the_minimum(self, limit, penalty, rate):
        student = uuid4()
        rule = subscription(rate=rate, limit=limit, trigger=100, penalty=penalty, extra=0)

        accruals = compute_monthly_accruals(
            lessons(student, limit - 1, start=date(2026, 3, 1)), lookup_for(rule)
        )

        total = sum((d.amount for d in accruals.get(STAFF, {}).values()), Decimal("0"))
        expected = (Decimal(rate) * (100 - penalty) / 100).quantize(Decimal("0.01"), rounding="ROUND_HALF_UP")
        assert total == expected
