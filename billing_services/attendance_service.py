"""
AttendanceService -- attendance marks of ordinary (non-controller) activities.

Contract:
    set_status(enrollment_id, date, status)  price and store a status
    set_value(enrollment_id, date, raw)      price and store a free entry
    clear(enrollment_id, date)               remove the mark
    fill_present(activity_id, date | range)  bulk "everyone present"
    load_period(activity_id, period)         warm the attendance cache

Every mutation re-syncs the staff journal of the mark's month, using the
attendance cache so the accruals see the write just made.

Invariants enforced:
    - One mark per (enrollment, date).  A mark with neither status nor value
      is deleted, never stored.
    - ``manual_value_edit`` freezes value and charge: a status change only
      changes the status, and auto-fill never touches the mark.
    - A failed single write raises AttendanceWriteError and leaves the cache
      as it was.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_engines.charges import price_manual_entry, value_for_status
from billing_engines.rule_index import billing_rules_for_date
from billing_kernel.db.types import round_money
from billing_kernel.domain.calendar import DateRange, is_working_day
from billing_kernel.domain.dtos import ActivityInfo, AttendanceRecord, EnrollmentInfo
from billing_kernel.domain.rules import BillingRules
from billing_kernel.domain.validation import parse_date, parse_manual_value, parse_period
from billing_kernel.exceptions import AttendanceWriteError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.attendance import AttendanceModel
from billing_kernel.selectors import AttendanceSelector, RuleSelector
from billing_kernel.utils.batching import run_batched
from billing_services.base import BaseService
from billing_services.cache import AttendanceCache
from billing_services.journal_sync import StaffJournalSynchronizer, SyncReport

logger = get_logger("services.attendance")

PRESENT = "present"


# ---------------------------------------------------------------------------
# Store writes
# ---------------------------------------------------------------------------


def upsert_mark(
    session: Session,
    enrollment: EnrollmentInfo,
    on_date: date,
    *,
    status: str | None,
    charged_amount: Decimal | None,
    value: Decimal | None,
    manual_value_edit: bool,
) -> AttendanceRecord:
    """
    Insert or update the mark of ``(enrollment, on_date)`` in a savepoint.

    Raises:
        AttendanceWriteError: If the store rejects the write.
    """
    try:
        with session.begin_nested():
            model = session.execute(
                select(AttendanceModel).where(
                    AttendanceModel.enrollment_id == enrollment.id,
                    AttendanceModel.date == on_date,
                )
            ).scalar_one_or_none()
            if model is None:
                model = AttendanceModel(enrollment_id=enrollment.id, date=on_date)
                session.add(model)
            model.status = status
            model.charged_amount = charged_amount
            model.value = value
            model.manual_value_edit = manual_value_edit
            session.flush()
            return model.to_dto(enrollment.activity_id, enrollment.student_id)
    except SQLAlchemyError as exc:
        raise AttendanceWriteError(enrollment.id, on_date, str(exc)) from exc


def delete_mark(session: Session, enrollment: EnrollmentInfo, on_date: date) -> bool:
    """
    Delete the mark of ``(enrollment, on_date)``; False when there was none.

    Raises:
        AttendanceWriteError: If the store rejects the delete.
    """
    try:
        with session.begin_nested():
            model = session.execute(
                select(AttendanceModel).where(
                    AttendanceModel.enrollment_id == enrollment.id,
                    AttendanceModel.date == on_date,
                )
            ).scalar_one_or_none()
            if model is None:
                return False
            session.delete(model)
            session.flush()
            return True
    except SQLAlchemyError as exc:
        raise AttendanceWriteError(enrollment.id, on_date, str(exc)) from exc


def fill_dates(when: date | DateRange, skip_weekends: bool) -> list[date]:
    days = list(when.days()) if isinstance(when, DateRange) else [parse_date(when)]
    if skip_weekends:
        days = [d for d in days if is_working_day(d)]
    return days


def can_autofill(record: AttendanceRecord | None) -> bool:
    """Auto-fill only writes where there is no status, no value and no manual edit."""
    if record is None:
        return True
    return not (record.status or record.value or record.manual_value_edit)


@dataclass(frozen=True)
class FillReport:
    activity_id: UUID
    filled: int = 0
    skipped: int = 0
    failed: tuple[Exception, ...] = ()
    syncs: tuple[SyncReport, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failed


class AttendanceService(BaseService):
    """
    Attendance writes for one session.

    ``session_factory`` is only used by ``fill_present`` when
    ``config.max_workers > 1``: each write then runs on a worker thread in a
    session of its own, committed on success.
    """

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        cache: AttendanceCache | None = None,
        synchronizer: StaffJournalSynchronizer | None = None,
        session_factory: Callable[[], Session] | None = None,
    ):
        super().__init__(session, config)
        self.cache = cache if cache is not None else AttendanceCache()
        self.synchronizer = synchronizer or StaffJournalSynchronizer(session, self.config)
        self._session_factory = session_factory
        self._rules = RuleSelector(session)
        self._attendance = AttendanceSelector(session)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_period(self, activity_id: UUID, period: DateRange | str) -> list[AttendanceRecord]:
        """Read every mark of the activity in the period and put them in the cache."""
        period = parse_period(period)
        records = self._attendance.records_for_activity(activity_id, period)
        self.cache.load(activity_id, period, records)
        logger.debug(
            "attendance_period_loaded",
            extra={"activity_id": activity_id, "period": period.label, "count": len(records)},
        )
        return records

    def _current(self, enrollment: EnrollmentInfo, on_date: date) -> AttendanceRecord | None:
        if self.cache.is_loaded(enrollment.activity_id, DateRange.month_of(on_date)):
            return self.cache.get(enrollment.id, on_date)
        return self._attendance.get_record(enrollment.id, on_date)

    def _rules_for(self, activity: ActivityInfo, on_date: date) -> BillingRules:
        return billing_rules_for_date(
            activity.billing_rules, self._rules.price_history(activity.id), on_date
        )

    # -------------------------------------------------------------------------
    # Single-mark writes
    # -------------------------------------------------------------------------

    def set_status(
        self, enrollment_id: UUID, on_date: date | str, status: str | None
    ) -> AttendanceRecord | None:
        """
        Store ``status`` for the enrollment on the date.

        A None or blank status removes the status; the mark survives only
        if it still carries a value.

        Returns:
            The stored mark, or None when the mark was removed.

        Raises:
            EnrollmentNotFoundError, ActivityNotFoundError, InvalidDateError,
            AttendanceWriteError.
        """
        on_date = parse_date(on_date)
        status = status or None
        enrollment = self._attendance.get_enrollment(enrollment_id)
        activity = self._rules.get_activity(enrollment.activity_id)
        existing = self._current(enrollment, on_date)

        with LogContext.bind(activity_id=activity.id):
            if status is None:
                if existing is None or not existing.value:
                    return self._remove(enrollment, on_date)
                return self._store_value_only(enrollment, activity, on_date, existing)

            if existing is not None and existing.manual_value_edit:
                charged, value, manual = existing.charged_amount, existing.value, True
            else:
                value = existing.value if existing is not None else None
                charged = value_for_status(
                    on_date,
                    status,
                    manual_value_input=value,
                    custom_price=enrollment.custom_price,
                    discount_percent=enrollment.discount_percent,
                    rules=self._rules_for(activity, on_date),
                )
                manual = False

            record = upsert_mark(
                self.session, enrollment, on_date,
                status=status, charged_amount=charged, value=value, manual_value_edit=manual,
            )
            self.cache.set(record)
            logger.info(
                "attendance_status_set",
                extra={
                    "enrollment_id": enrollment.id,
                    "on_date": on_date,
                    "status": status,
                    "charged_amount": charged,
                    "manual_value_edit": manual,
                },
            )
            self._sync(activity.id, on_date)
            return record

    def set_value(
        self, enrollment_id: UUID, on_date: date | str, raw: object
    ) -> AttendanceRecord | None:
        """
        Store a free numeric entry (hours, sessions or an amount).

        Empty input or zero clears the value.  An entry no rule can price,
        or one that differs from the rule-derived amount, is stored as money
        and flags the mark ``manual_value_edit``; the flag then stays set.

        Raises:
            InvalidManualValueError: If ``raw`` is not a number.
            EnrollmentNotFoundError, ActivityNotFoundError, InvalidDateError,
            AttendanceWriteError.
        """
        value = parse_manual_value(raw)
        on_date = parse_date(on_date)
        enrollment = self._attendance.get_enrollment(enrollment_id)
        activity = self._rules.get_activity(enrollment.activity_id)
        existing = self._current(enrollment, on_date)
        status = existing.status if existing is not None else None

        with LogContext.bind(activity_id=activity.id):
            rules = self._rules_for(activity, on_date)

            if value is None or value == 0:
                if status is None:
                    return self._remove(enrollment, on_date)
                charged = value_for_status(
                    on_date, status,
                    custom_price=enrollment.custom_price,
                    discount_percent=enrollment.discount_percent,
                    rules=rules,
                )
                record = upsert_mark(
                    self.session, enrollment, on_date,
                    status=status, charged_amount=charged, value=None, manual_value_edit=False,
                )
            else:
                price = price_manual_entry(
                    on_date,
                    value,
                    custom_price=enrollment.custom_price,
                    discount_percent=enrollment.discount_percent,
                    rules=rules,
                    tolerance=self.config.value_tolerance,
                )
                manual = price.manual_edit or (existing is not None and existing.manual_value_edit)
                charged = None
                if status is not None and not manual:
                    charged = value_for_status(
                        on_date, status,
                        manual_value_input=value,
                        custom_price=enrollment.custom_price,
                        discount_percent=enrollment.discount_percent,
                        rules=rules,
                    )
                if charged is None:
                    charged = round_money(value) if manual else price.amount
                record = upsert_mark(
                    self.session, enrollment, on_date,
                    status=status, charged_amount=charged, value=value, manual_value_edit=manual,
                )

            self.cache.set(record)
            logger.info(
                "attendance_value_set",
                extra={
                    "enrollment_id": enrollment.id,
                    "on_date": on_date,
                    "value": record.value,
                    "charged_amount": record.charged_amount,
                    "manual_value_edit": record.manual_value_edit,
                },
            )
            self._sync(activity.id, on_date)
            return record

    def clear(self, enrollment_id: UUID, on_date: date | str) -> None:
        """Remove the mark (status and value) and re-sync the journal."""
        on_date = parse_date(on_date)
        enrollment = self._attendance.get_enrollment(enrollment_id)
        with LogContext.bind(activity_id=enrollment.activity_id):
            self._remove(enrollment, on_date)

    def _remove(self, enrollment: EnrollmentInfo, on_date: date) -> None:
        removed = delete_mark(self.session, enrollment, on_date)
        self.cache.invalidate(enrollment.id, on_date)
        logger.info(
            "attendance_cleared",
            extra={"enrollment_id": enrollment.id, "on_date": on_date, "removed": removed},
        )
        self._sync(enrollment.activity_id, on_date)

    def _store_value_only(
        self,
        enrollment: EnrollmentInfo,
        activity: ActivityInfo,
        on_date: date,
        existing: AttendanceRecord,
    ) -> AttendanceRecord:
        if existing.manual_value_edit:
            charged = round_money(existing.value)
        else:
            charged = price_manual_entry(
                on_date,
                existing.value,
                custom_price=enrollment.custom_price,
                discount_percent=enrollment.discount_percent,
                rules=self._rules_for(activity, on_date),
                tolerance=self.config.value_tolerance,
            ).amount
        record = upsert_mark(
            self.session, enrollment, on_date,
            status=None,
            charged_amount=charged,
            value=existing.value,
            manual_value_edit=existing.manual_value_edit,
        )
        self.cache.set(record)
        logger.info(
            "attendance_status_removed",
            extra={"enrollment_id": enrollment.id, "on_date": on_date, "charged_amount": charged},
        )
        self._sync(activity.id, on_date)
        return record

    # -------------------------------------------------------------------------
    # Bulk fill
    # -------------------------------------------------------------------------

    def fill_present(self, activity_id: UUID, when: date | str | DateRange) -> FillReport:
        """
        Mark every active enrollment ``present`` where it has no mark yet.

        Weekends are skipped when ``config.skip_weekends_on_fill`` is set.
        Writes go through the batch combinator; one journal sync per touched
        month follows.  Activities with ``auto_journal`` off are not filled.
        """
        days = fill_dates(when, self.config.skip_weekends_on_fill)
        activity = self._rules.get_activity(activity_id)
        if not activity.auto_journal:
            with LogContext.bind(activity_id=activity_id):
                logger.info("attendance_fill_skipped", extra={"reason": "auto_journal_disabled"})
            return FillReport(activity_id=activity_id)
        enrollments = self._attendance.enrollments_for_activity(activity_id)

        with LogContext.bind(activity_id=activity_id):
            months = sorted({DateRange.month_of(d) for d in days}, key=lambda p: p.start)
            for month in months:
                if not self.cache.is_loaded(activity_id, month):
                    self.load_period(activity_id, month)

            tasks = []
            skipped = 0
            for on_date in days:
                rules = self._rules_for(activity, on_date)
                for enrollment in enrollments:
                    if not can_autofill(self.cache.get(enrollment.id, on_date)):
                        skipped += 1
                        continue
                    charged = value_for_status(
                        on_date, PRESENT,
                        custom_price=enrollment.custom_price,
                        discount_percent=enrollment.discount_percent,
                        rules=rules,
                    )
                    tasks.append((
                        f"{enrollment.id} {on_date.isoformat()}",
                        self._fill_task(enrollment, on_date, charged),
                    ))

            outcome = run_batched(
                tasks,
                batch_size=self.config.batch_size,
                max_workers=self._workers(),
            )
            for settled in outcome.succeeded:
                self.cache.set(settled.value)

            syncs = tuple(
                self.synchronizer.sync_for_period(
                    activity_id, month, records=self.cache.records_for(activity_id, month)
                )
                for month in months
            )

            report = FillReport(
                activity_id=activity_id,
                filled=len(outcome.succeeded),
                skipped=skipped,
                failed=tuple(s.error for s in outcome.failed),
                syncs=syncs,
            )
            logger.info(
                "attendance_fill_completed",
                extra={
                    "days": len(days),
                    "filled": report.filled,
                    "skipped": report.skipped,
                    "failed": len(report.failed),
                },
            )
            return report

    def _workers(self) -> int:
        if self._session_factory is None:
            return 1
        return self.config.max_workers

    def _fill_task(self, enrollment: EnrollmentInfo, on_date: date, charged: Decimal | None):
        if self._workers() == 1:
            return lambda: upsert_mark(
                self.session, enrollment, on_date,
                status=PRESENT, charged_amount=charged, value=None, manual_value_edit=False,
            )

        def run_in_own_session() -> AttendanceRecord:
            with self._session_factory() as session, session.begin():
                return upsert_mark(
                    session, enrollment, on_date,
                    status=PRESENT, charged_amount=charged, value=None, manual_value_edit=False,
                )

        return run_in_own_session

    def _sync(self, activity_id: UUID, on_date: date) -> SyncReport:
        month = DateRange.month_of(on_date)
        if not self.cache.is_loaded(activity_id, month):
            self.load_period(activity_id, month)
        return self.synchronizer.sync_for_period(
            activity_id, month, records=self.cache.records_for(activity_id, month)
        )
