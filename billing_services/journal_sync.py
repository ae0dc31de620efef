"""
StaffJournalSynchronizer -- keeps the derived staff journal equal to what
the attendance and staff rules imply.

Contract:
    ``sync_for_period(activity_id, period, records=None) -> SyncReport``

    For every (staff, date) of the period:
        - gross accrual > 0   upsert the auto row keyed by
                              (staff_id, activity_id, date, manual=false,
                              no group lesson)
                              with base_amount = gross and
                              amount = gross after the staff member's
                              deductions
        - gross accrual == 0  delete the auto row, if any

    Rows already equal to the recomputed figures are left alone, so a second
    sync over unchanged inputs writes nothing.

Invariants enforced:
    - Manual rows (``is_manual_override = true``) are never read for
      reconciliation, updated or deleted.
    - Every write runs in its own savepoint; one failing row is logged and
      reported in ``SyncReport.failed`` while the others are still applied.
    - Accruals are always computed over whole calendar months, because the
      subscription state machine counts lessons per month.  Only rows
      inside ``period`` are written.
    - Staff members in manual accrual mode get no auto rows.
    - Group-lesson rows (``group_lesson_id`` set) belong to the group lesson
      journal and are left alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_engines.deductions import apply_deductions
from billing_engines.staff_accrual import compute_monthly_accruals, rule_lookup
from billing_kernel.db.types import round_money
from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import AttendanceRecord, JournalEntryInfo, StaffInfo
from billing_kernel.domain.rules import AccrualMode
from billing_kernel.domain.validation import parse_period
from billing_kernel.exceptions import JournalWriteError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.journal import StaffJournalEntryModel
from billing_kernel.selectors import (
    AttendanceSelector,
    JournalSelector,
    RuleSelector,
    StaffSelector,
)
from billing_kernel.utils.batching import run_batched
from billing_services.base import BaseService

logger = get_logger("services.journal_sync")


def covering_months(period: DateRange) -> DateRange:
    """From the first day of the period's first month to the last day of its last month."""
    first = DateRange.month_of(period.start)
    last = DateRange.month_of(period.end)
    return DateRange(first.start, last.end)


@dataclass(frozen=True)
class PlannedEntry:
    """Target state of one auto journal row."""

    staff_id: UUID
    activity_id: UUID
    date: date
    base_amount: Decimal
    amount: Decimal
    deductions_applied: list[dict[str, Any]]
    notes: str | None
    group_lesson_id: UUID | None = None
    existing_id: UUID | None = None

    def matches(self, entry: JournalEntryInfo) -> bool:
        return (
            entry.amount == self.amount
            and entry.base_amount == self.base_amount
            and (entry.notes or None) == self.notes
            and [dict(d) for d in entry.deductions_applied] == self.deductions_applied
        )


@dataclass(frozen=True)
class SyncReport:
    activity_id: UUID
    period: DateRange
    upserted: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: tuple[JournalWriteError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failed


class StaffJournalSynchronizer(BaseService):
    """
    Reconciles the auto rows of one activity's staff journal.

    Writes share the caller's session and run one after another, each in a
    savepoint; ``config.batch_size`` sets how many go into one batch.
    """

    def __init__(self, session: Session, config: BillingConfig | None = None):
        super().__init__(session, config)
        self._rules = RuleSelector(session)
        self._attendance = AttendanceSelector(session)
        self._journal = JournalSelector(session)
        self._staff = StaffSelector(session)

    def sync_for_period(
        self,
        activity_id: UUID,
        period: DateRange | str,
        records: Iterable[AttendanceRecord] | None = None,
    ) -> SyncReport:
        """
        Reconcile the auto journal rows of ``activity_id`` within ``period``.

        Args:
            activity_id: Activity whose journal is reconciled.
            period: A DateRange or a ``YYYY-MM`` month.
            records: The activity's marks for the months covering the
                period, when the caller already holds them (the attendance
                cache).  Read from the store when omitted.

        Returns:
            SyncReport.  Partial failure is reported, never raised.

        Raises:
            ActivityNotFoundError: If the activity does not exist.
        """
        period = parse_period(period)
        with LogContext.bind(activity_id=activity_id, period=period.label):
            self._rules.get_activity(activity_id)
            compute_range = covering_months(period)
            if records is None:
                marks = self._attendance.records_for_activity(activity_id, compute_range)
            else:
                marks = [
                    r for r in records
                    if r.activity_id == activity_id and r.date in compute_range
                ]

            planned = self._plan(activity_id, period, marks)
            existing = self._journal.entries_for_activity(
                activity_id, period, manual=False, group_lessons=False
            )
            return self._apply(activity_id, period, planned, existing)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def _plan(
        self,
        activity_id: UUID,
        period: DateRange,
        marks: list[AttendanceRecord],
    ) -> dict[tuple[UUID, date], PlannedEntry]:
        staff_rules = self._rules.staff_rules_for_activity(activity_id)
        names = self._attendance.student_names({m.student_id for m in marks if m.is_present})
        accruals = compute_monthly_accruals(marks, rule_lookup(staff_rules), names)

        staff = self._staff.staff_by_id(accruals.keys())
        planned: dict[tuple[UUID, date], PlannedEntry] = {}
        for staff_id, days in accruals.items():
            info = staff.get(staff_id)
            if info is not None and info.accrual_mode == AccrualMode.MANUAL:
                continue
            for on_date, daily in days.items():
                if on_date not in period or daily.amount <= 0:
                    continue
                planned[(staff_id, on_date)] = self._planned_entry(
                    info, staff_id, activity_id, on_date, daily.amount, daily.notes
                )
        return planned

    @staticmethod
    def _planned_entry(
        info: StaffInfo | None,
        staff_id: UUID,
        activity_id: UUID,
        on_date: date,
        gross: Decimal,
        notes: list[str],
    ) -> PlannedEntry:
        result = apply_deductions(gross, info.deductions if info is not None else ())
        return PlannedEntry(
            staff_id=staff_id,
            activity_id=activity_id,
            date=on_date,
            base_amount=round_money(result.gross_amount),
            amount=result.final_amount,
            deductions_applied=result.breakdown(),
            notes="; ".join(notes) or None,
        )

    # -------------------------------------------------------------------------
    # Applying
    # -------------------------------------------------------------------------

    def _apply(
        self,
        activity_id: UUID,
        period: DateRange,
        planned: dict[tuple[UUID, date], PlannedEntry],
        existing: list[JournalEntryInfo],
    ) -> SyncReport:
        tasks = []
        unchanged = 0
        upserts = 0
        deletes = 0
        seen: set[tuple[UUID, date]] = set()

        for entry in existing:
            key = (entry.staff_id, entry.date)
            target = planned.get(key)
            if target is None or key in seen:
                # No accrual any more, or a duplicate auto row for the key.
                tasks.append((f"delete {entry.staff_id} {entry.date}", self._delete_task(entry)))
                deletes += 1
                continue
            seen.add(key)
            if target.matches(entry):
                unchanged += 1
                continue
            target = replace(target, existing_id=entry.id)
            tasks.append((f"upsert {entry.staff_id} {entry.date}", self._upsert_task(target)))
            upserts += 1

        for key, target in sorted(planned.items(), key=lambda kv: (kv[0][1], str(kv[0][0]))):
            if key in seen:
                continue
            tasks.append((f"upsert {target.staff_id} {target.date}", self._upsert_task(target)))
            upserts += 1

        outcome = run_batched(tasks, batch_size=self.config.batch_size)
        failed = tuple(s.error for s in outcome.failed)
        failed_upserts = sum(1 for e in failed if isinstance(e, JournalWriteError) and e.operation == "upsert")
        failed_deletes = len(failed) - failed_upserts

        report = SyncReport(
            activity_id=activity_id,
            period=period,
            upserted=upserts - failed_upserts,
            deleted=deletes - failed_deletes,
            unchanged=unchanged,
            failed=failed,
        )
        log = logger.warning if failed else logger.info
        log(
            "journal_sync_completed",
            extra={
                "upserted": report.upserted,
                "deleted": report.deleted,
                "unchanged": report.unchanged,
                "failed": len(report.failed),
            },
        )
        return report

    def _upsert_task(self, target: PlannedEntry):
        return lambda: self.write_entry(target)

    def _delete_task(self, entry: JournalEntryInfo):
        return lambda: self.delete_entry(entry)

    def write_entry(self, target: PlannedEntry) -> UUID:
        """
        Insert or update one auto row inside a savepoint.

        Raises:
            JournalWriteError: If the store rejects the write.
        """
        try:
            with self.session.begin_nested():
                model = None
                if target.existing_id is not None:
                    model = self.session.get(StaffJournalEntryModel, target.existing_id)
                if model is None:
                    model = StaffJournalEntryModel(
                        staff_id=target.staff_id,
                        activity_id=target.activity_id,
                        group_lesson_id=target.group_lesson_id,
                        date=target.date,
                        is_manual_override=False,
                    )
                    self.session.add(model)
                model.amount = target.amount
                model.base_amount = target.base_amount
                model.deductions_applied = target.deductions_applied
                model.notes = target.notes
                self.session.flush()
                return model.id
        except SQLAlchemyError as exc:
            raise JournalWriteError(target.staff_id, target.date, "upsert", str(exc)) from exc

    def delete_entry(self, entry: JournalEntryInfo) -> None:
        """
        Delete one auto row inside a savepoint.

        Raises:
            JournalWriteError: If the store rejects the delete.
        """
        try:
            with self.session.begin_nested():
                model = self.session.get(StaffJournalEntryModel, entry.id)
                if model is not None and not model.is_manual_override:
                    self.session.delete(model)
                    self.session.flush()
        except SQLAlchemyError as exc:
            raise JournalWriteError(entry.staff_id, entry.date, "delete", str(exc)) from exc
