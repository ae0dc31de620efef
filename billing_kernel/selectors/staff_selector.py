"""Read access to staff members and their payouts."""

from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import PayoutInfo, StaffInfo
from billing_kernel.exceptions import StaffNotFoundError
from billing_kernel.models.journal import StaffPayoutModel
from billing_kernel.models.staff import StaffModel
from billing_kernel.selectors.base import BaseSelector


class StaffSelector(BaseSelector):

    def get_staff(self, staff_id: UUID) -> StaffInfo:
        """
        Raises:
            StaffNotFoundError: If no staff member has this id.
        """
        model = self.session.get(StaffModel, staff_id)
        if model is None:
            raise StaffNotFoundError(staff_id)
        return model.to_dto()

    def staff_by_id(self, staff_ids) -> dict[UUID, StaffInfo]:
        ids = list(staff_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(StaffModel).where(StaffModel.id.in_(ids))
        ).scalars().all()
        return {row.id: row.to_dto() for row in rows}

    def payouts(
        self,
        staff_id: UUID,
        period: DateRange | None = None,
        include_deleted: bool = False,
    ) -> list[PayoutInfo]:
        query = select(StaffPayoutModel).where(StaffPayoutModel.staff_id == staff_id)
        if period is not None:
            query = query.where(
                StaffPayoutModel.payout_date >= period.start,
                StaffPayoutModel.payout_date <= period.end,
            )
        if not include_deleted:
            query = query.where(StaffPayoutModel.is_deleted.is_(False))
        rows = self.session.execute(query.order_by(StaffPayoutModel.payout_date)).scalars().all()
        return [row.to_dto() for row in rows]
