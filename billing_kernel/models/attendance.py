"""
Attendance marks.

Exactly one row per ``(enrollment_id, date)``.  A row exists while it has
a status or a value; ``manual_value_edit`` freezes it against automatic
recalculation and auto-fill.
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class AttendanceModel(TrackedBase):
    __tablename__ = "attendance"

    enrollment_id: Mapped[UUID] = mapped_column(
        ForeignKey("enrollments.id"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    charged_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    value: Mapped[Decimal | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    manual_value_edit: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("enrollment_id", "date", name="uq_attendance_enrollment_date"),
        Index("idx_attendance_date", "date"),
    )

    def to_dto(self, activity_id: UUID, student_id: UUID):
        from billing_kernel.domain.dtos import AttendanceRecord

        return AttendanceRecord(
            id=self.id,
            enrollment_id=self.enrollment_id,
            activity_id=activity_id,
            student_id=student_id,
            date=self.date,
            status=self.status,
            charged_amount=self.charged_amount,
            value=self.value,
            manual_value_edit=self.manual_value_edit,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<AttendanceModel {self.enrollment_id} {self.date} {self.status}>"
