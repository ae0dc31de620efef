"""Tests for AttendanceService: single marks, free entries and bulk fill."""

import os
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from billing_config import BillingConfig
from billing_kernel.domain.calendar import DateRange
from billing_kernel.exceptions import (
    AttendanceWriteError,
    EnrollmentNotFoundError,
    InvalidDateError,
    InvalidManualValueError,
)
from billing_kernel.models import AttendanceModel, StaffJournalEntryModel
from billing_services import AttendanceService
from billing_services import attendance_service as attendance_module
from tests.factories import rules

FEB_3 = date(2026, 2, 3)


@pytest.fixture
def drawing(make_activity):
    return make_activity(
        "Drawing",
        billing_rules=rules(
            present=(100, "fixed"),
            sick=(50, "fixed"),
            value=(100, "fixed"),
            custom_statuses=[{"id": "trial", "name": "Trial", "rate": "-20"}],
        ),
    )


@pytest.fixture
def service(session, config):
    return AttendanceService(session, config)


def stored(session, enrollment_id, on_date=FEB_3):
    return session.execute(
        select(AttendanceModel).where(
            AttendanceModel.enrollment_id == enrollment_id,
            AttendanceModel.date == on_date,
        )
    ).scalar_one_or_none()


def journal_amounts(session, staff_id):
    rows = session.execute(
        select(StaffJournalEntryModel)
        .where(StaffJournalEntryModel.staff_id == staff_id)
        .order_by(StaffJournalEntryModel.date)
    ).scalars().all()
    return [(r.date, r.amount) for r in rows]


class TestSetStatus:

    def test_fixed_rule(self, session, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)

        record = service.set_status(enrollment.id, FEB_3, "present")

        assert record.status == "present"
        assert record.charged_amount == Decimal("100")
        assert record.manual_value_edit is False
        assert stored(session, enrollment.id).status == "present"

    def test_accepts_iso_date(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        assert service.set_status(enrollment.id, "2026-02-03", "sick").charged_amount == Decimal("50")

    def test_subscription_spread_over_working_days(self, service, make_activity, make_enrollment):
        monthly = make_activity("Chess", billing_rules=rules(present=(2000, "subscription")))
        enrollment = make_enrollment(monthly.id)

        record = service.set_status(enrollment.id, FEB_3, "present")

        assert record.charged_amount == Decimal("100.00")

    def test_discount_and_custom_price(self, service, drawing, make_enrollment):
        discounted = make_enrollment(drawing.id, discount_percent=Decimal("10"))
        custom = make_enrollment(drawing.id, custom_price=Decimal("70"), discount_percent=Decimal("50"))

        assert service.set_status(discounted.id, FEB_3, "present").charged_amount == Decimal("90.00")
        assert service.set_status(custom.id, FEB_3, "present").charged_amount == Decimal("35.00")

    def test_custom_status_refund(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        assert service.set_status(enrollment.id, FEB_3, "trial").charged_amount == Decimal("-20.00")

    def test_status_without_rule_charges_nothing(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)

        record = service.set_status(enrollment.id, FEB_3, "vacation")

        assert record.status == "vacation"
        assert record.charged_amount is None

    def test_price_history_for_the_mark_date(self, service, drawing, make_enrollment, make_price_history):
        make_price_history(drawing.id, rules(present=(150, "fixed")), effective_from=date(2026, 2, 1))
        enrollment = make_enrollment(drawing.id)

        assert service.set_status(enrollment.id, FEB_3, "present").charged_amount == Decimal("150")
        assert service.set_status(enrollment.id, date(2026, 1, 30), "present").charged_amount == Decimal("100")

    def test_clearing_status_removes_empty_mark(self, session, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        service.set_status(enrollment.id, FEB_3, "present")

        assert service.set_status(enrollment.id, FEB_3, None) is None
        assert stored(session, enrollment.id) is None
        assert service.set_status(enrollment.id, FEB_3, "") is None

    def test_clearing_status_keeps_value(self, session, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        service.set_status(enrollment.id, FEB_3, "present")
        service.set_value(enrollment.id, FEB_3, "100")

        record = service.set_status(enrollment.id, FEB_3, None)

        assert record.status is None
        assert record.value == Decimal("100")
        assert record.charged_amount == Decimal("100")
        assert stored(session, enrollment.id) is not None

    def test_manual_edit_freezes_value_and_charge(self, session, service, drawing, make_enrollment, make_mark):
        enrollment = make_enrollment(drawing.id)
        make_mark(
            enrollment.id, FEB_3, status="present",
            charged_amount=Decimal("55"), value=Decimal("55"), manual_value_edit=True,
        )

        record = service.set_status(enrollment.id, FEB_3, "sick")

        assert record.status == "sick"
        assert record.charged_amount == Decimal("55")
        assert record.value == Decimal("55")
        assert record.manual_value_edit is True

    def test_unknown_enrollment(self, service):
        with pytest.raises(EnrollmentNotFoundError):
            service.set_status(uuid4(), FEB_3, "present")

    def test_malformed_date(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        with pytest.raises(InvalidDateError):
            service.set_status(enrollment.id, "03.02.2026", "present")

    def test_logs_with_activity_context(self, service, drawing, make_enrollment, captured_logs):
        enrollment = make_enrollment(drawing.id)

        service.set_status(enrollment.id, FEB_3, "present")

        record = next(r for r in captured_logs() if r["message"] == "attendance_status_set")
        assert record["activity_id"] == str(drawing.id)
        assert record["status"] == "present"
        assert record["charged_amount"] == "100.00"


class TestSetValue:

    def test_hourly_quantity(self, service, make_activity, make_enrollment):
        lessons = make_activity("Tutoring", billing_rules=rules(value=(40, "hourly")))
        enrollment = make_enrollment(lessons.id)

        record = service.set_value(enrollment.id, FEB_3, "1,5")

        assert record.value == Decimal("1.5")
        assert record.charged_amount == Decimal("60.00")
        assert record.manual_value_edit is False

    def test_amount_matching_the_rule(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)

        record = service.set_value(enrollment.id, FEB_3, "100.004")

        assert record.charged_amount == Decimal("100.00")
        assert record.manual_value_edit is False

    def test_amount_differing_from_the_rule_is_manual(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)

        record = service.set_value(enrollment.id, FEB_3, "120")

        assert record.charged_amount == Decimal("120.00")
        assert record.manual_value_edit is True

    def test_tolerance_from_config(self, session, drawing, make_enrollment):
        service = AttendanceService(session, BillingConfig(value_tolerance=Decimal("5")))
        enrollment = make_enrollment(drawing.id)

        record = service.set_value(enrollment.id, FEB_3, "103")

        assert record.charged_amount == Decimal("100.00")
        assert record.manual_value_edit is False

    def test_no_rule_is_manual(self, service, make_activity, make_enrollment):
        plain = make_activity("Plain")
        enrollment = make_enrollment(plain.id)

        record = service.set_value(enrollment.id, FEB_3, "75")

        assert record.charged_amount == Decimal("75.00")
        assert record.manual_value_edit is True

    def test_manual_flag_is_sticky(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        service.set_value(enrollment.id, FEB_3, "120")

        record = service.set_value(enrollment.id, FEB_3, "100")

        assert record.manual_value_edit is True
        assert record.charged_amount == Decimal("100.00")

    def test_status_and_hourly_value(self, service, make_activity, make_enrollment):
        lessons = make_activity(
            "Tutoring", billing_rules=rules(present=(40, "hourly"), value=(40, "hourly"))
        )
        enrollment = make_enrollment(lessons.id)
        service.set_status(enrollment.id, FEB_3, "present")

        record = service.set_value(enrollment.id, FEB_3, "2")

        assert record.status == "present"
        assert record.charged_amount == Decimal("80.00")

    @pytest.mark.parametrize("raw", ["abc", "1.2.3", "NaN"])
    def test_rejects_non_numbers(self, session, service, drawing, make_enrollment, raw):
        enrollment = make_enrollment(drawing.id)

        with pytest.raises(InvalidManualValueError):
            service.set_value(enrollment.id, FEB_3, raw)
        assert stored(session, enrollment.id) is None

    @pytest.mark.parametrize("raw", ["", None, "0"])
    def test_blank_or_zero_removes_value_only_mark(self, session, service, drawing, make_enrollment, raw):
        enrollment = make_enrollment(drawing.id)
        service.set_value(enrollment.id, FEB_3, "120")

        assert service.set_value(enrollment.id, FEB_3, raw) is None
        assert stored(session, enrollment.id) is None

    def test_blank_keeps_status_and_reprices(self, service, drawing, make_enrollment):
        enrollment = make_enrollment(drawing.id)
        service.set_status(enrollment.id, FEB_3, "present")
        service.set_value(enrollment.id, FEB_3, "120")

        record = service.set_value(enrollment.id, FEB_3, "")

        assert record.status == "present"
        assert record.value is None
        assert record.charged_amount == Decimal("100")
        assert record.manual_value_edit is False


class TestJournalFollowsMarks:

    def test_each_write_resyncs_the_month(
        self, session, service, drawing, make_enrollment, make_staff, make_staff_rule
    ):
        staff = make_staff()
        make_staff_rule(staff.id, "per_session", Decimal("30"), activity_id=drawing.id)
        first = make_enrollment(drawing.id)
        second = make_enrollment(drawing.id)

        service.set_status(first.id, FEB_3, "present")
        service.set_status(second.id, FEB_3, "present")
        assert journal_amounts(session, staff.id) == [(FEB_3, Decimal("60.00"))]

        service.clear(second.id, FEB_3)
        assert journal_amounts(session, staff.id) == [(FEB_3, Decimal("30.00"))]

        service.set_status(first.id, FEB_3, "sick")
        assert journal_amounts(session, staff.id) == []

    def test_auto_journal_off_still_accrues(
        self, session, service, make_activity, make_enrollment, make_staff, make_staff_rule
    ):
        quiet = make_activity("Quiet", billing_rules=rules(present=(100, "fixed")), auto_journal=False)
        staff = make_staff()
        make_staff_rule(staff.id, "per_session", Decimal("50"), activity_id=quiet.id)
        enrollment = make_enrollment(quiet.id)

        service.set_status(enrollment.id, FEB_3, "present")

        assert journal_amounts(session, staff.id) == [(FEB_3, Decimal("50.00"))]

    def test_failed_write_raises_and_keeps_cache(
        self, session, service, drawing, make_enrollment, monkeypatch
    ):
        enrollment = make_enrollment(drawing.id)
        service.set_status(enrollment.id, FEB_3, "present")
        before = service.cache.get(enrollment.id, FEB_3)

        def broken(session, enrollment, on_date, **kwargs):
            raise AttendanceWriteError(enrollment.id, on_date, "disk full")

        monkeypatch.setattr(attendance_module, "upsert_mark", broken)

        with pytest.raises(AttendanceWriteError):
            service.set_status(enrollment.id, FEB_3, "sick")
        assert service.cache.get(enrollment.id, FEB_3) == before
        assert stored(session, enrollment.id).status == "present"


class TestFillPresent:

    @pytest.fixture
    def group(self, drawing, make_enrollment, make_mark):
        enrollments = [make_enrollment(drawing.id) for _ in range(3)]
        make_mark(enrollments[0].id, FEB_3, status="sick", charged_amount=Decimal("50"))
        make_mark(
            enrollments[1].id, date(2026, 2, 4), status=None,
            charged_amount=Decimal("10"), value=Decimal("10"), manual_value_edit=True,
        )
        return enrollments

    def count_marks(self, session, status="present"):
        return session.execute(
            select(func.count()).select_from(AttendanceModel).where(AttendanceModel.status == status)
        ).scalar_one()

    def test_week_skips_weekends_and_existing_marks(self, session, service, drawing, group):
        week = DateRange(date(2026, 2, 2), date(2026, 2, 8))

        report = service.fill_present(drawing.id, week)

        assert report.ok
        assert report.filled == 13
        assert report.skipped == 2
        assert self.count_marks(session) == 13
        assert stored(session, group[0].id).status == "sick"
        assert stored(session, group[1].id, date(2026, 2, 4)).status is None

    def test_weekends_included_when_configured(self, session, drawing, group):
        service = AttendanceService(session, BillingConfig(skip_weekends_on_fill=False))

        report = service.fill_present(drawing.id, DateRange(date(2026, 2, 2), date(2026, 2, 8)))

        assert report.filled == 19

    def test_single_date_and_charges(self, session, service, drawing, group):
        report = service.fill_present(drawing.id, "2026-02-05")

        assert report.filled == 3
        for enrollment in group:
            assert stored(session, enrollment.id, date(2026, 2, 5)).charged_amount == Decimal("100")

    def test_syncs_each_touched_month(
        self, session, service, drawing, group, make_staff, make_staff_rule
    ):
        staff = make_staff()
        make_staff_rule(staff.id, "fixed", Decimal("500"), activity_id=drawing.id)

        report = service.fill_present(drawing.id, DateRange(date(2026, 1, 30), date(2026, 2, 2)))

        assert len(report.syncs) == 2
        assert journal_amounts(session, staff.id) == [
            (date(2026, 1, 30), Decimal("500.00")),
            (date(2026, 2, 2), Decimal("500.00")),
        ]

    def test_failures_are_collected(self, session, service, drawing, group, monkeypatch):
        real = attendance_module.upsert_mark

        def flaky(session, enrollment, on_date, **kwargs):
            if enrollment.id == group[2].id:
                raise AttendanceWriteError(enrollment.id, on_date, "locked")
            return real(session, enrollment, on_date, **kwargs)

        monkeypatch.setattr(attendance_module, "upsert_mark", flaky)

        report = service.fill_present(drawing.id, "2026-02-05")

        assert not report.ok
        assert report.filled == 2
        assert [e.enrollment_id for e in report.failed] == [group[2].id]
        assert stored(session, group[2].id, date(2026, 2, 5)) is None
        assert service.cache.get(group[2].id, date(2026, 2, 5)) is None

    @pytest.mark.skipif(
        os.environ.get("BILLING_TEST_DATABASE_URL", "sqlite").startswith("sqlite"),
        reason="worker sessions need a server database",
    )
    def test_worker_sessions(self, session, session_factory, drawing, group):
        session.commit()
        service = AttendanceService(
            session, BillingConfig(batch_size=4, max_workers=2), session_factory=session_factory
        )

        report = service.fill_present(drawing.id, "2026-02-05")

        assert report.filled == 3
        with session_factory() as check:
            assert check.execute(
                select(func.count()).select_from(AttendanceModel)
                .where(AttendanceModel.date == date(2026, 2, 5))
            ).scalar_one() == 3

    def test_zero_value_manual_mark_is_not_filled(self, session, service, drawing, group, make_mark):
        make_mark(
            group[2].id, date(2026, 2, 5), status=None,
            charged_amount=Decimal("0"), value=Decimal("0"), manual_value_edit=True,
        )

        report = service.fill_present(drawing.id, "2026-02-05")

        assert (report.filled, report.skipped) == (2, 1)
        record = stored(session, group[2].id, date(2026, 2, 5))
        assert record.status is None
        assert record.value == Decimal("0")
        assert record.charged_amount == Decimal("0")
        assert record.manual_value_edit is True

    def test_auto_journal_off_is_not_filled(
        self, session, service, make_activity, make_enrollment, captured_logs
    ):
        quiet = make_activity("Quiet", billing_rules=rules(present=(100, "fixed")), auto_journal=False)
        make_enrollment(quiet.id)

        report = service.fill_present(quiet.id, "2026-02-05")

        assert (report.filled, report.skipped) == (0, 0)
        assert self.count_marks(session) == 0
        skipped = next(r for r in captured_logs() if r["message"] == "attendance_fill_skipped")
        assert skipped["activity_id"] == str(quiet.id)
