"""Read access to activities, price history, staff rules and manual rates."""

from uuid import UUID

from sqlalchemy import or_, select

from billing_kernel.domain.dtos import ActivityInfo
from billing_kernel.domain.rules import ManualRate, PriceHistoryRecord, StaffBillingRule
from billing_kernel.exceptions import ActivityNotFoundError
from billing_kernel.models.activity import ActivityModel, ActivityPriceHistoryModel
from billing_kernel.models.staff import StaffBillingRuleModel, StaffManualRateModel
from billing_kernel.selectors.base import BaseSelector


class RuleSelector(BaseSelector):
    """
    Rule histories are returned whole (every window, open and closed).
    Picking the window for a date is the rule index's job, not SQL's.
    """

    def get_activity(self, activity_id: UUID) -> ActivityInfo:
        """
        Raises:
            ActivityNotFoundError: If no activity has this id.
        """
        model = self.session.get(ActivityModel, activity_id)
        if model is None:
            raise ActivityNotFoundError(activity_id)
        return model.to_dto()

    def activities_by_id(self, activity_ids) -> dict[UUID, ActivityInfo]:
        ids = list(activity_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(ActivityModel).where(ActivityModel.id.in_(ids))
        ).scalars().all()
        return {row.id: row.to_dto() for row in rows}

    def price_history(self, activity_id: UUID) -> list[PriceHistoryRecord]:
        rows = self.session.execute(
            select(ActivityPriceHistoryModel)
            .where(ActivityPriceHistoryModel.activity_id == activity_id)
            .order_by(ActivityPriceHistoryModel.effective_from)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def price_histories(self, activity_ids) -> dict[UUID, list[PriceHistoryRecord]]:
        ids = list(activity_ids)
        out: dict[UUID, list[PriceHistoryRecord]] = {i: [] for i in ids}
        if not ids:
            return out
        rows = self.session.execute(
            select(ActivityPriceHistoryModel)
            .where(ActivityPriceHistoryModel.activity_id.in_(ids))
            .order_by(ActivityPriceHistoryModel.effective_from)
        ).scalars().all()
        for row in rows:
            out[row.activity_id].append(row.to_dto())
        return out

    def staff_rules_for_activity(self, activity_id: UUID) -> list[StaffBillingRule]:
        """Rules scoped to this activity plus every staff member's global rules."""
        rows = self.session.execute(
            select(StaffBillingRuleModel)
            .where(
                or_(
                    StaffBillingRuleModel.activity_id == activity_id,
                    StaffBillingRuleModel.activity_id.is_(None),
                )
            )
            .order_by(StaffBillingRuleModel.effective_from)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def staff_rules_for_staff(self, staff_id: UUID) -> list[StaffBillingRule]:
        rows = self.session.execute(
            select(StaffBillingRuleModel)
            .where(StaffBillingRuleModel.staff_id == staff_id)
            .order_by(StaffBillingRuleModel.effective_from)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def manual_rates(self, staff_id: UUID) -> list[ManualRate]:
        rows = self.session.execute(
            select(StaffManualRateModel)
            .where(StaffManualRateModel.staff_id == staff_id)
            .order_by(StaffManualRateModel.effective_from)
        ).scalars().all()
        return [row.to_dto() for row in rows]
