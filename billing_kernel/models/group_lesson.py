"""
Group lessons: a named lesson of an activity taught by one or more staff
members, with the number of sessions held per date.
"""

import datetime as dt
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class GroupLessonModel(TrackedBase):
    __tablename__ = "group_lessons"

    activity_id: Mapped[UUID] = mapped_column(ForeignKey("activities.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def to_dto(self, staff_ids=()):
        from billing_kernel.domain.dtos import GroupLessonInfo

        return GroupLessonInfo(
            id=self.id,
            activity_id=self.activity_id,
            name=self.name,
            staff_ids=tuple(staff_ids),
        )

    def __repr__(self) -> str:
        return f"<GroupLessonModel {self.name}>"


class GroupLessonStaffModel(TrackedBase):
    __tablename__ = "group_lesson_staff"

    group_lesson_id: Mapped[UUID] = mapped_column(
        ForeignKey("group_lessons.id"), nullable=False
    )
    staff_id: Mapped[UUID] = mapped_column(ForeignKey("staff.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("group_lesson_id", "staff_id", name="uq_group_lesson_staff"),
    )


class GroupLessonSessionModel(TrackedBase):
    """Sessions held for a group lesson on one date.  One row per (lesson, date)."""

    __tablename__ = "group_lesson_sessions"

    group_lesson_id: Mapped[UUID] = mapped_column(
        ForeignKey("group_lessons.id"), nullable=False
    )
    session_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    sessions_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    __table_args__ = (
        UniqueConstraint("group_lesson_id", "session_date", name="uq_group_lesson_session_date"),
        Index("idx_group_lesson_session_date", "session_date"),
    )
