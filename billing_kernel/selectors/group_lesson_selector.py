"""Read access to group lessons and their sessions."""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import GroupLessonInfo
from billing_kernel.exceptions import GroupLessonNotFoundError
from billing_kernel.models.group_lesson import (
    GroupLessonModel,
    GroupLessonSessionModel,
    GroupLessonStaffModel,
)
from billing_kernel.selectors.base import BaseSelector


class GroupLessonSelector(BaseSelector):

    def get_lesson(self, group_lesson_id: UUID) -> GroupLessonInfo:
        """
        The lesson with the ids of the staff members who teach it.

        Raises:
            GroupLessonNotFoundError: If no group lesson has this id.
        """
        model = self.session.get(GroupLessonModel, group_lesson_id)
        if model is None:
            raise GroupLessonNotFoundError(group_lesson_id)
        staff_ids = self.session.execute(
            select(GroupLessonStaffModel.staff_id)
            .where(GroupLessonStaffModel.group_lesson_id == group_lesson_id)
            .order_by(GroupLessonStaffModel.created_at)
        ).scalars().all()
        return model.to_dto(staff_ids)

    def sessions_count(self, group_lesson_id: UUID, on_date: date) -> int:
        """Sessions held on the date, 0 when none were recorded."""
        count = self.session.execute(
            select(GroupLessonSessionModel.sessions_count).where(
                GroupLessonSessionModel.group_lesson_id == group_lesson_id,
                GroupLessonSessionModel.session_date == on_date,
            )
        ).scalar_one_or_none()
        return count or 0
