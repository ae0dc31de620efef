"""
GroupLessonJournalService -- sessions of group lessons and the staff
journal rows they earn.

Recording the number of sessions held on a date upserts the lesson's
session row, then reconciles the auto journal rows keyed by
``(staff, activity, group_lesson_id, date)`` for every staff member who
teaches the lesson.  Blank or zero sessions clear the date: the session row
and the lesson's auto rows for it are deleted.

Journal writes go through the batch combinator with one savepoint each,
like the activity journal synchronizer.  Manual rows and rows of other
lessons are never touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_engines.deductions import apply_deductions
from billing_engines.group_lessons import group_lesson_accruals
from billing_kernel.db.types import round_money
from billing_kernel.domain.dtos import GroupLessonInfo, JournalEntryInfo
from billing_kernel.domain.rules import AccrualMode
from billing_kernel.domain.validation import parse_date, parse_manual_value
from billing_kernel.exceptions import InvalidManualValueError, JournalWriteError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.group_lesson import GroupLessonSessionModel
from billing_kernel.models.journal import StaffJournalEntryModel
from billing_kernel.selectors import GroupLessonSelector, RuleSelector, StaffSelector
from billing_kernel.utils.batching import run_batched
from billing_services.base import BaseService
from billing_services.journal_sync import PlannedEntry, StaffJournalSynchronizer

logger = get_logger("services.group_lessons")


@dataclass(frozen=True)
class GroupLessonReport:
    group_lesson_id: UUID
    date: date
    sessions_count: int
    upserted: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: tuple[JournalWriteError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failed


def parse_sessions_count(raw: object) -> int:
    """Blank means 0; anything else must be a non-negative whole number."""
    value = parse_manual_value(raw)
    if value is None:
        return 0
    if value < 0 or value != value.to_integral_value():
        raise InvalidManualValueError(raw)
    return int(value)


class GroupLessonJournalService(BaseService):

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        synchronizer: StaffJournalSynchronizer | None = None,
    ):
        super().__init__(session, config)
        self.synchronizer = synchronizer or StaffJournalSynchronizer(session, self.config)
        self._lessons = GroupLessonSelector(session)
        self._rules = RuleSelector(session)
        self._staff = StaffSelector(session)

    def record_sessions(
        self, group_lesson_id: UUID, on_date: date | str, raw_count: object
    ) -> GroupLessonReport:
        """
        Store the sessions held on the date and reconcile the staff rows.

        Raises:
            GroupLessonNotFoundError: If the lesson does not exist.
            InvalidManualValueError: If the count is not a whole number >= 0.
            JournalWriteError: If the session row cannot be written.
        """
        on_date = parse_date(on_date)
        count = parse_sessions_count(raw_count)
        lesson = self._lessons.get_lesson(group_lesson_id)

        with LogContext.bind(activity_id=lesson.activity_id):
            self._store_sessions(lesson, on_date, count)
            return self._reconcile(lesson, on_date, count)

    def clear_sessions(self, group_lesson_id: UUID, on_date: date | str) -> GroupLessonReport:
        """Delete the date's session row and the lesson's auto rows for it."""
        return self.record_sessions(group_lesson_id, on_date, None)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _store_sessions(self, lesson: GroupLessonInfo, on_date: date, count: int) -> None:
        try:
            with self.session.begin_nested():
                model = self.session.execute(
                    select(GroupLessonSessionModel).where(
                        GroupLessonSessionModel.group_lesson_id == lesson.id,
                        GroupLessonSessionModel.session_date == on_date,
                    )
                ).scalar_one_or_none()
                if count == 0:
                    if model is not None:
                        self.session.delete(model)
                else:
                    if model is None:
                        model = GroupLessonSessionModel(
                            group_lesson_id=lesson.id, session_date=on_date
                        )
                        self.session.add(model)
                    model.sessions_count = count
                self.session.flush()
        except SQLAlchemyError as exc:
            raise JournalWriteError(None, on_date, "sessions", str(exc)) from exc

    def _plan(
        self, lesson: GroupLessonInfo, on_date: date, count: int
    ) -> dict[UUID, PlannedEntry]:
        if count == 0:
            return {}
        staff = self._staff.staff_by_id(lesson.staff_ids)
        rules_by_staff = {
            staff_id: self._rules.staff_rules_for_staff(staff_id)
            for staff_id, info in staff.items()
            if info.accrual_mode != AccrualMode.MANUAL
        }
        planned = {}
        for staff_id, accrual in group_lesson_accruals(lesson, on_date, count, rules_by_staff).items():
            result = apply_deductions(accrual.amount, staff[staff_id].deductions)
            planned[staff_id] = PlannedEntry(
                staff_id=staff_id,
                activity_id=lesson.activity_id,
                date=on_date,
                base_amount=round_money(result.gross_amount),
                amount=result.final_amount,
                deductions_applied=result.breakdown(),
                notes=accrual.note,
                group_lesson_id=lesson.id,
            )
        return planned

    def _existing(self, lesson: GroupLessonInfo, on_date: date) -> list[JournalEntryInfo]:
        rows = self.session.execute(
            select(StaffJournalEntryModel)
            .where(
                StaffJournalEntryModel.group_lesson_id == lesson.id,
                StaffJournalEntryModel.date == on_date,
                StaffJournalEntryModel.is_manual_override.is_(False),
            )
            .order_by(StaffJournalEntryModel.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def _reconcile(self, lesson: GroupLessonInfo, on_date: date, count: int) -> GroupLessonReport:
        planned = self._plan(lesson, on_date, count)
        tasks = []
        upserts = deletes = unchanged = 0
        seen: set[UUID] = set()

        for entry in self._existing(lesson, on_date):
            target = planned.get(entry.staff_id)
            if target is None or entry.staff_id in seen:
                tasks.append((f"delete {entry.staff_id}", self._delete_task(entry)))
                deletes += 1
                continue
            seen.add(entry.staff_id)
            if target.matches(entry):
                unchanged += 1
                continue
            tasks.append((f"upsert {entry.staff_id}", self._upsert_task(replace(target, existing_id=entry.id))))
            upserts += 1

        for staff_id, target in planned.items():
            if staff_id not in seen:
                tasks.append((f"upsert {staff_id}", self._upsert_task(target)))
                upserts += 1

        outcome = run_batched(tasks, batch_size=self.config.batch_size)
        failed = tuple(s.error for s in outcome.failed)
        failed_upserts = sum(1 for e in failed if isinstance(e, JournalWriteError) and e.operation == "upsert")

        report = GroupLessonReport(
            group_lesson_id=lesson.id,
            date=on_date,
            sessions_count=count,
            upserted=upserts - failed_upserts,
            deleted=deletes - (len(failed) - failed_upserts),
            unchanged=unchanged,
            failed=failed,
        )
        log = logger.warning if failed else logger.info
        log(
            "group_lesson_journal_synced",
            extra={
                "group_lesson_id": lesson.id,
                "on_date": on_date,
                "sessions_count": count,
                "upserted": report.upserted,
                "deleted": report.deleted,
                "unchanged": report.unchanged,
                "failed": len(failed),
            },
        )
        return report

    def _upsert_task(self, target: PlannedEntry):
        return lambda: self.synchronizer.write_entry(target)

    def _delete_task(self, entry: JournalEntryInfo):
        return lambda: self.synchronizer.delete_entry(entry)
