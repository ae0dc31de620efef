"""Read access to enrollments and attendance marks."""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import AttendanceRecord, EnrollmentInfo
from billing_kernel.exceptions import EnrollmentNotFoundError
from billing_kernel.models.attendance import AttendanceModel
from billing_kernel.models.student import EnrollmentModel, StudentModel
from billing_kernel.selectors.base import BaseSelector


class AttendanceSelector(BaseSelector):
    """Attendance rows are always returned joined with their enrollment."""

    def get_enrollment(self, enrollment_id: UUID) -> EnrollmentInfo:
        """
        Raises:
            EnrollmentNotFoundError: If no enrollment has this id.
        """
        model = self.session.get(EnrollmentModel, enrollment_id)
        if model is None:
            raise EnrollmentNotFoundError(enrollment_id)
        return model.to_dto()

    def enrollments_for_activity(
        self, activity_id: UUID, active_only: bool = True
    ) -> list[EnrollmentInfo]:
        query = select(EnrollmentModel).where(EnrollmentModel.activity_id == activity_id)
        if active_only:
            query = query.where(EnrollmentModel.is_active.is_(True))
        rows = self.session.execute(query.order_by(EnrollmentModel.created_at)).scalars().all()
        return [row.to_dto() for row in rows]

    def enrollments_for_student(
        self, student_id: UUID, active_only: bool = True
    ) -> list[EnrollmentInfo]:
        query = select(EnrollmentModel).where(EnrollmentModel.student_id == student_id)
        if active_only:
            query = query.where(EnrollmentModel.is_active.is_(True))
        rows = self.session.execute(query.order_by(EnrollmentModel.created_at)).scalars().all()
        return [row.to_dto() for row in rows]

    def student_names(self, student_ids) -> dict[UUID, str]:
        ids = list(student_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(StudentModel.id, StudentModel.full_name).where(StudentModel.id.in_(ids))
        ).all()
        return {row.id: row.full_name for row in rows}

    def get_record(self, enrollment_id: UUID, on_date: date) -> AttendanceRecord | None:
        row = self.session.execute(
            select(AttendanceModel, EnrollmentModel)
            .join(EnrollmentModel, AttendanceModel.enrollment_id == EnrollmentModel.id)
            .where(
                AttendanceModel.enrollment_id == enrollment_id,
                AttendanceModel.date == on_date,
            )
        ).one_or_none()
        if row is None:
            return None
        attendance, enrollment = row
        return attendance.to_dto(enrollment.activity_id, enrollment.student_id)

    def records_for_activity(
        self, activity_id: UUID, period: DateRange
    ) -> list[AttendanceRecord]:
        """Every mark of every enrollment of the activity within the period, date-ordered."""
        rows = self.session.execute(
            select(AttendanceModel, EnrollmentModel)
            .join(EnrollmentModel, AttendanceModel.enrollment_id == EnrollmentModel.id)
            .where(
                EnrollmentModel.activity_id == activity_id,
                AttendanceModel.date >= period.start,
                AttendanceModel.date <= period.end,
            )
            .order_by(AttendanceModel.date, AttendanceModel.created_at)
        ).all()
        return [
            attendance.to_dto(enrollment.activity_id, enrollment.student_id)
            for attendance, enrollment in rows
        ]
