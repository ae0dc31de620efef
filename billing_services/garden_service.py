"""
GardenAttendanceService -- marks on controller (garden) activities.

A controller mark is priced by the garden accrual calculator from the
child's base and food tariff enrollments, and mirrored into finance
transactions: base tariff income on every marked day, a food refund
expense on absent days.  The controller's staff journal is re-synced after
each mark.

When the accrual cannot be computed (no controller config, no base tariff)
the mark is still stored, with a zero charge, and a warning is logged.
A mark flagged ``manual_value_edit`` keeps its charge and value; only its
status and the finance transactions follow the new status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_engines.garden import (
    GardenAccrual,
    TransactionKey,
    TransactionPlan,
    daily_accrual,
    plan_garden_transactions,
)
from billing_kernel.db.types import ZERO
from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import ActivityInfo, AttendanceRecord, EnrollmentInfo, TransactionInfo
from billing_kernel.domain.validation import parse_date
from billing_kernel.exceptions import AttendanceWriteError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.finance import FinanceTransactionModel
from billing_kernel.selectors import AttendanceSelector, RuleSelector, TransactionSelector
from billing_kernel.utils.batching import run_batched
from billing_services.attendance_service import (
    PRESENT,
    FillReport,
    can_autofill,
    delete_mark,
    fill_dates,
    upsert_mark,
)
from billing_services.base import BaseService
from billing_services.cache import AttendanceCache
from billing_services.journal_sync import StaffJournalSynchronizer

logger = get_logger("services.garden")


@dataclass(frozen=True)
class GardenMarkResult:
    record: AttendanceRecord | None
    accrual: GardenAccrual | None
    plan: TransactionPlan


class GardenAttendanceService(BaseService):

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        cache: AttendanceCache | None = None,
        synchronizer: StaffJournalSynchronizer | None = None,
    ):
        super().__init__(session, config)
        self.cache = cache if cache is not None else AttendanceCache()
        self.synchronizer = synchronizer or StaffJournalSynchronizer(session, self.config)
        self._rules = RuleSelector(session)
        self._attendance = AttendanceSelector(session)
        self._finance = TransactionSelector(session)

    def set_status(
        self, enrollment_id: UUID, on_date: date | str, status: str | None
    ) -> GardenMarkResult:
        """
        Store a controller mark, its finance transactions, and re-sync.

        Raises:
            EnrollmentNotFoundError, ActivityNotFoundError, InvalidDateError,
            AttendanceWriteError.
        """
        on_date = parse_date(on_date)
        enrollment = self._attendance.get_enrollment(enrollment_id)
        controller = self._rules.get_activity(enrollment.activity_id)
        with LogContext.bind(activity_id=controller.id):
            with self.session.begin_nested():
                result = self._mark(controller, enrollment, on_date, status or None)
            self._sync(controller.id, DateRange.month_of(on_date))
            return result

    def transactions_on(self, enrollment_id: UUID, on_date: date | str) -> list[TransactionInfo]:
        """Finance transactions of the enrollment's child on the date."""
        enrollment = self._attendance.get_enrollment(enrollment_id)
        return self._finance.for_student_on(enrollment.student_id, parse_date(on_date))

    def fill_present(self, controller_id: UUID, when: date | str | DateRange) -> FillReport:
        """Mark every active controller enrollment ``present`` where it has no mark."""
        days = fill_dates(when, self.config.skip_weekends_on_fill)
        controller = self._rules.get_activity(controller_id)
        if not controller.auto_journal:
            with LogContext.bind(activity_id=controller_id):
                logger.info("garden_fill_skipped", extra={"reason": "auto_journal_disabled"})
            return FillReport(activity_id=controller_id)
        enrollments = self._attendance.enrollments_for_activity(controller_id)

        with LogContext.bind(activity_id=controller_id):
            months = sorted({DateRange.month_of(d) for d in days}, key=lambda p: p.start)
            for month in months:
                self._ensure_loaded(controller_id, month)

            tasks = []
            skipped = 0
            for on_date in days:
                for enrollment in enrollments:
                    if not can_autofill(self.cache.get(enrollment.id, on_date)):
                        skipped += 1
                        continue
                    tasks.append((
                        f"{enrollment.id} {on_date.isoformat()}",
                        self._fill_task(controller, enrollment, on_date),
                    ))

            outcome = run_batched(tasks, batch_size=self.config.batch_size)
            syncs = tuple(self._sync(controller_id, month) for month in months)
            report = FillReport(
                activity_id=controller_id,
                filled=len(outcome.succeeded),
                skipped=skipped,
                failed=tuple(s.error for s in outcome.failed),
                syncs=syncs,
            )
            logger.info(
                "garden_fill_completed",
                extra={"filled": report.filled, "skipped": report.skipped, "failed": len(report.failed)},
            )
            return report

    def _fill_task(self, controller: ActivityInfo, enrollment: EnrollmentInfo, on_date: date):
        def run() -> GardenMarkResult:
            with self.session.begin_nested():
                return self._mark(controller, enrollment, on_date, PRESENT)

        return run

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _mark(
        self,
        controller: ActivityInfo,
        enrollment: EnrollmentInfo,
        on_date: date,
        status: str | None,
    ) -> GardenMarkResult:
        config = controller.controller_config

        if status is None:
            plan = (
                plan_garden_transactions(enrollment.student_id, on_date, None, config, None)
                if config is not None else TransactionPlan()
            )
            delete_mark(self.session, enrollment, on_date)
            self._apply_plan(enrollment, on_date, plan)
            self.cache.invalidate(enrollment.id, on_date)
            logger.info(
                "garden_mark_cleared",
                extra={"enrollment_id": enrollment.id, "on_date": on_date, "deleted": len(plan.deletes)},
            )
            return GardenMarkResult(record=None, accrual=None, plan=plan)

        accrual, activities = self._accrual(controller, enrollment, on_date, status)
        if accrual is None:
            logger.warning(
                "garden_configuration_missing",
                extra={
                    "enrollment_id": enrollment.id,
                    "student_id": enrollment.student_id,
                    "on_date": on_date,
                    "has_config": config is not None,
                },
            )
            plan = TransactionPlan()
            charged = ZERO
        else:
            plan = plan_garden_transactions(
                enrollment.student_id, on_date, status, config, accrual,
                activity_names={a.id: a.name for a in activities.values()},
            )
            charged = accrual.amount

        value, manual = None, False
        existing = self._attendance.get_record(enrollment.id, on_date)
        if existing is not None and existing.manual_value_edit:
            charged, value, manual = existing.charged_amount, existing.value, True

        record = upsert_mark(
            self.session, enrollment, on_date,
            status=status, charged_amount=charged, value=value, manual_value_edit=manual,
        )
        self._apply_plan(enrollment, on_date, plan)
        self.cache.set(record)
        logger.info(
            "garden_mark_set",
            extra={
                "enrollment_id": enrollment.id,
                "on_date": on_date,
                "status": status,
                "charged_amount": charged,
                "manual_value_edit": manual,
                "upserts": len(plan.upserts),
                "deletes": len(plan.deletes),
            },
        )
        return GardenMarkResult(record=record, accrual=accrual, plan=plan)

    def _accrual(
        self,
        controller: ActivityInfo,
        enrollment: EnrollmentInfo,
        on_date: date,
        status: str,
    ) -> tuple[GardenAccrual | None, dict[UUID, ActivityInfo]]:
        config = controller.controller_config
        if config is None:
            return None, {}
        tariff_ids = set(config.base_tariff_ids) | set(config.food_tariff_ids)
        activities = self._rules.activities_by_id(tariff_ids | {controller.id})
        accrual = daily_accrual(
            enrollment.student_id,
            on_date,
            controller.id,
            self._attendance.enrollments_for_student(enrollment.student_id),
            activities,
            status,
            price_histories=self._rules.price_histories(tariff_ids),
        )
        return accrual, activities

    def _apply_plan(self, enrollment: EnrollmentInfo, on_date: date, plan: TransactionPlan) -> None:
        if plan.is_empty:
            return
        try:
            with self.session.begin_nested():
                for key in plan.deletes:
                    for model in self._transactions(key):
                        self.session.delete(model)
                for planned in plan.upserts:
                    rows = self._transactions(planned.key)
                    model = rows[0] if rows else None
                    for duplicate in rows[1:]:
                        self.session.delete(duplicate)
                    if model is None:
                        model = FinanceTransactionModel(
                            type=planned.key.type.value,
                            student_id=planned.key.student_id,
                            activity_id=planned.key.activity_id,
                            date=planned.key.date,
                        )
                        self.session.add(model)
                    model.amount = planned.amount
                    model.description = planned.description
                    model.category = planned.category
                self.session.flush()
        except SQLAlchemyError as exc:
            raise AttendanceWriteError(enrollment.id, on_date, str(exc)) from exc

    def _transactions(self, key: TransactionKey) -> list[FinanceTransactionModel]:
        return list(
            self.session.execute(
                select(FinanceTransactionModel)
                .where(
                    FinanceTransactionModel.student_id == key.student_id,
                    FinanceTransactionModel.activity_id == key.activity_id,
                    FinanceTransactionModel.date == key.date,
                    FinanceTransactionModel.type == key.type.value,
                )
                .order_by(FinanceTransactionModel.created_at)
            ).scalars()
        )

    def _ensure_loaded(self, activity_id: UUID, month: DateRange) -> None:
        if not self.cache.is_loaded(activity_id, month):
            self.cache.load(
                activity_id, month, self._attendance.records_for_activity(activity_id, month)
            )

    def _sync(self, activity_id: UUID, month: DateRange):
        self._ensure_loaded(activity_id, month)
        return self.synchronizer.sync_for_period(
            activity_id, month, records=self.cache.records_for(activity_id, month)
        )
