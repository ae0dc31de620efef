"""Read access to staff journal entries."""

from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import JournalEntryInfo
from billing_kernel.models.journal import StaffJournalEntryModel
from billing_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):

    def entries_for_staff(
        self,
        staff_id: UUID,
        period: DateRange | None = None,
        manual: bool | None = None,
    ) -> list[JournalEntryInfo]:
        """
        Args:
            staff_id: Staff member.
            period: Optional inclusive date range.
            manual: True for manual rows only, False for auto rows only,
                None for both.
        """
        query = select(StaffJournalEntryModel).where(
            StaffJournalEntryModel.staff_id == staff_id
        )
        if period is not None:
            query = query.where(
                StaffJournalEntryModel.date >= period.start,
                StaffJournalEntryModel.date <= period.end,
            )
        if manual is not None:
            query = query.where(StaffJournalEntryModel.is_manual_override.is_(manual))
        rows = self.session.execute(
            query.order_by(StaffJournalEntryModel.date, StaffJournalEntryModel.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def entries_for_activity(
        self,
        activity_id: UUID,
        period: DateRange,
        manual: bool | None = None,
        group_lessons: bool | None = None,
    ) -> list[JournalEntryInfo]:
        """
        Args:
            group_lessons: True for group-lesson rows only, False for rows
                without a group lesson, None for both.
        """
        query = select(StaffJournalEntryModel).where(
            StaffJournalEntryModel.activity_id == activity_id,
            StaffJournalEntryModel.date >= period.start,
            StaffJournalEntryModel.date <= period.end,
        )
        if manual is not None:
            query = query.where(StaffJournalEntryModel.is_manual_override.is_(manual))
        if group_lessons is True:
            query = query.where(StaffJournalEntryModel.group_lesson_id.is_not(None))
        elif group_lessons is False:
            query = query.where(StaffJournalEntryModel.group_lesson_id.is_(None))
        rows = self.session.execute(
            query.order_by(
                StaffJournalEntryModel.date,
                StaffJournalEntryModel.staff_id,
                StaffJournalEntryModel.created_at,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]
