"""
Tests for GardenAttendanceService.

February 2026 has 20 working days; the base tariff is 2000 a month (100 a
day) and meals are 30 a day.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from billing_kernel.domain.calendar import DateRange
from billing_kernel.models import AttendanceModel, FinanceTransactionModel, StaffJournalEntryModel
from billing_kernel.selectors import TransactionSelector
from billing_services import GardenAttendanceService
from tests.factories import rules

FEB_3 = date(2026, 2, 3)


@pytest.fixture
def garden(make_activity, make_student, make_enrollment):
    base = make_activity("Base tariff", billing_rules=rules(present=(2000, "subscription")))
    food = make_activity("Meals", billing_rules=rules(present=(30, "fixed")))
    controller = make_activity(
        "Garden",
        config={"base_tariff_ids": [str(base.id)], "food_tariff_ids": [str(food.id)]},
    )
    child = make_student("Mila")
    make_enrollment(base.id, child.id)
    make_enrollment(food.id, child.id)
    mark_enrollment = make_enrollment(controller.id, child.id)
    return {
        "base": base,
        "food": food,
        "controller": controller,
        "child": child,
        "enrollment": mark_enrollment,
    }


@pytest.fixture
def service(session, config):
    return GardenAttendanceService(session, config)


def transactions(session, student_id, on_date=FEB_3):
    rows = TransactionSelector(session).for_student_on(student_id, on_date)
    return [(r.type, r.activity_id, r.amount) for r in rows]


class TestGardenMarks:

    def test_present_charges_base_tariff(self, session, service, garden):
        result = service.set_status(garden["enrollment"].id, FEB_3, "present")

        assert result.record.charged_amount == Decimal("100.00")
        assert result.accrual.working_days == 20
        assert transactions(session, garden["child"].id) == [
            ("income", garden["base"].id, Decimal("100.00")),
        ]

    def test_absent_refunds_food(self, session, service, garden):
        result = service.set_status(garden["enrollment"].id, FEB_3, "absent")

        assert result.record.charged_amount == Decimal("70.00")
        assert transactions(session, garden["child"].id) == [
            ("expense", garden["food"].id, Decimal("30.00")),
            ("income", garden["base"].id, Decimal("100.00")),
        ]

    def test_status_changes_keep_one_row_per_kind(self, session, service, garden):
        enrollment_id = garden["enrollment"].id

        service.set_status(enrollment_id, FEB_3, "present")
        service.set_status(enrollment_id, FEB_3, "absent")
        service.set_status(enrollment_id, FEB_3, "present")

        assert transactions(session, garden["child"].id) == [
            ("income", garden["base"].id, Decimal("100.00")),
        ]

    def test_sick_charges_base_without_refund(self, session, service, garden):
        service.set_status(garden["enrollment"].id, FEB_3, "absent")

        result = service.set_status(garden["enrollment"].id, FEB_3, "sick")

        assert result.record.charged_amount == Decimal("100.00")
        assert [t[0] for t in transactions(session, garden["child"].id)] == ["income"]

    def test_clear_removes_mark_and_transactions(self, session, service, garden):
        service.set_status(garden["enrollment"].id, FEB_3, "absent")

        result = service.set_status(garden["enrollment"].id, FEB_3, None)

        assert result.record is None
        assert transactions(session, garden["child"].id) == []
        assert session.execute(select(AttendanceModel)).scalars().all() == []
        assert service.cache.get(garden["enrollment"].id, FEB_3) is None

    def test_discount_on_base_enrollment(self, session, service, garden, make_enrollment, make_student):
        sibling = make_student("Lev")
        make_enrollment(garden["base"].id, sibling.id, discount_percent=Decimal("10"))
        make_enrollment(garden["food"].id, sibling.id)
        enrollment = make_enrollment(garden["controller"].id, sibling.id)

        result = service.set_status(enrollment.id, FEB_3, "present")

        assert result.record.charged_amount == Decimal("90.00")

    def test_missing_base_tariff_stores_zero_and_warns(
        self, session, service, garden, make_student, make_enrollment, captured_logs
    ):
        newcomer = make_student("Nika")
        enrollment = make_enrollment(garden["controller"].id, newcomer.id)

        result = service.set_status(enrollment.id, FEB_3, "present")

        assert result.accrual is None
        assert result.record.charged_amount == Decimal("0")
        assert transactions(session, newcomer.id) == []
        warning = next(r for r in captured_logs() if r["message"] == "garden_configuration_missing")
        assert warning["level"] == "WARNING"
        assert warning["has_config"] is True

    def test_controller_without_config(self, session, service, make_activity, make_enrollment, captured_logs):
        bare = make_activity("Garden without tariffs")
        enrollment = make_enrollment(bare.id)

        result = service.set_status(enrollment.id, FEB_3, "present")

        assert result.record.charged_amount == Decimal("0")
        warning = next(r for r in captured_logs() if r["message"] == "garden_configuration_missing")
        assert warning["has_config"] is False

    def test_journal_follows_controller_marks(
        self, session, service, garden, make_staff, make_staff_rule
    ):
        staff = make_staff("Nanny")
        make_staff_rule(staff.id, "per_session", Decimal("20"), activity_id=garden["controller"].id)

        service.set_status(garden["enrollment"].id, FEB_3, "present")
        rows = session.execute(
            select(StaffJournalEntryModel).where(StaffJournalEntryModel.staff_id == staff.id)
        ).scalars().all()
        assert [(r.date, r.amount) for r in rows] == [(FEB_3, Decimal("20.00"))]

        service.set_status(garden["enrollment"].id, FEB_3, None)
        rows = session.execute(
            select(StaffJournalEntryModel).where(StaffJournalEntryModel.staff_id == staff.id)
        ).scalars().all()
        assert rows == []

    def test_manual_edit_keeps_charge_and_value(self, session, service, garden, make_mark):
        enrollment_id = garden["enrollment"].id
        make_mark(
            enrollment_id, FEB_3, status="present",
            charged_amount=Decimal("55"), value=Decimal("55"), manual_value_edit=True,
        )

        result = service.set_status(enrollment_id, FEB_3, "absent")

        assert result.record.status == "absent"
        assert result.record.charged_amount == Decimal("55")
        assert result.record.value == Decimal("55")
        assert result.record.manual_value_edit is True
        stored = session.execute(
            select(AttendanceModel).where(AttendanceModel.enrollment_id == enrollment_id)
        ).scalar_one()
        assert (stored.charged_amount, stored.manual_value_edit) == (Decimal("55"), True)
        assert transactions(session, garden["child"].id) == [
            ("expense", garden["food"].id, Decimal("30.00")),
            ("income", garden["base"].id, Decimal("100.00")),
        ]

    def test_transactions_on(self, service, garden):
        service.set_status(garden["enrollment"].id, FEB_3, "absent")

        posted = service.transactions_on(garden["enrollment"].id, "2026-02-03")

        assert [(t.type, t.amount) for t in posted] == [
            ("expense", Decimal("30.00")),
            ("income", Decimal("100.00")),
        ]
        assert {t.student_id for t in posted} == {garden["child"].id}
        assert service.transactions_on(garden["enrollment"].id, date(2026, 2, 4)) == []


class TestGardenFill:

    def test_fill_week(self, session, service, garden):
        week = DateRange(date(2026, 2, 2), date(2026, 2, 8))

        report = service.fill_present(garden["controller"].id, week)

        assert report.ok
        assert report.filled == 5
        income = session.execute(
            select(FinanceTransactionModel).where(FinanceTransactionModel.type == "income")
        ).scalars().all()
        assert len(income) == 5
        assert {t.amount for t in income} == {Decimal("100.00")}

    def test_fill_skips_marked_days(self, session, service, garden):
        service.set_status(garden["enrollment"].id, FEB_3, "absent")

        report = service.fill_present(garden["controller"].id, DateRange(FEB_3, date(2026, 2, 4)))

        assert report.filled == 1
        assert report.skipped == 1
        assert [t[0] for t in transactions(session, garden["child"].id)] == ["expense", "income"]

    def test_auto_journal_off_is_not_filled(self, session, service, make_activity, make_enrollment, captured_logs):
        quiet = make_activity("Quiet garden", auto_journal=False)
        make_enrollment(quiet.id)

        report = service.fill_present(quiet.id, "2026-02-05")

        assert report.filled == 0
        assert session.execute(select(AttendanceModel)).scalars().all() == []
        assert any(r["message"] == "garden_fill_skipped" for r in captured_logs())
