"""Students and their enrollments in activities."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class StudentModel(TrackedBase):
    __tablename__ = "students"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<StudentModel {self.full_name}>"


class EnrollmentModel(TrackedBase):
    """
    A student's membership in an activity.

    ``custom_price`` overrides the activity's rule rate for this student;
    ``discount_percent`` applies on top of either.
    """

    __tablename__ = "enrollments"

    student_id: Mapped[UUID] = mapped_column(ForeignKey("students.id"), nullable=False)
    activity_id: Mapped[UUID] = mapped_column(ForeignKey("activities.id"), nullable=False)
    custom_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("idx_enrollment_activity", "activity_id"),
        Index("idx_enrollment_student", "student_id"),
    )

    def to_dto(self):
        from billing_kernel.domain.dtos import EnrollmentInfo

        return EnrollmentInfo(
            id=self.id,
            student_id=self.student_id,
            activity_id=self.activity_id,
            custom_price=self.custom_price,
            discount_percent=self.discount_percent or Decimal("0"),
            is_active=self.is_active,
        )
