"""
RateHistoryService -- append-only rule histories.

Activity price history, staff billing rules and manual rates are never
edited in place.  A new record for an owner key closes the owner's open
record (``effective_to = new.effective_from``) and is inserted as the new
open record, both inside one savepoint, so the close-out always happens
before the insert and a failure leaves neither.

Owner keys:
    price history   activity_id
    staff rule      (staff_id, activity_id or None)
    manual rate     (staff_id, activity_id or None)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.rules import (
    BillingRules,
    ManualRate,
    ManualRateType,
    PriceHistoryRecord,
    StaffBillingRule,
    StaffRateType,
    parse_decimal_field,
    parse_enum_field,
)
from billing_kernel.domain.validation import parse_date
from billing_kernel.exceptions import EffectiveDateOrderError, InvalidRuleError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.activity import ActivityPriceHistoryModel
from billing_kernel.models.staff import StaffBillingRuleModel, StaffManualRateModel
from billing_kernel.selectors import RuleSelector, StaffSelector
from billing_services.base import BaseService
from billing_services.journal_sync import StaffJournalSynchronizer, SyncReport

logger = get_logger("services.rate_history")


def _optional_decimal(field_name: str, raw: Any) -> Decimal | None:
    if raw is None:
        return None
    value = parse_decimal_field(field_name, raw)
    if value < 0:
        raise InvalidRuleError(field_name, raw, "must not be negative")
    return value


class RateHistoryService(BaseService):

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        synchronizer: StaffJournalSynchronizer | None = None,
    ):
        super().__init__(session, config)
        self.synchronizer = synchronizer or StaffJournalSynchronizer(session, self.config)
        self._rules = RuleSelector(session)
        self._staff = StaffSelector(session)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def append_price_history(
        self,
        activity_id: UUID,
        billing_rules: BillingRules | Mapping[str, Any],
        effective_from: date | str,
    ) -> PriceHistoryRecord:
        """
        Append a price history record for an activity.

        Existing attendance charges are not repriced.

        Raises:
            ActivityNotFoundError: If the activity does not exist.
            InvalidRuleError: If ``billing_rules`` is malformed.
            EffectiveDateOrderError: If the new record does not start after
                the owner's latest record.
        """
        effective_from = parse_date(effective_from)
        rules = (
            billing_rules if isinstance(billing_rules, BillingRules)
            else BillingRules.from_dict(billing_rules)
        )
        self._rules.get_activity(activity_id)

        model = ActivityPriceHistoryModel(
            activity_id=activity_id,
            billing_rules=rules.to_dict(),
            effective_from=effective_from,
        )
        self._append(
            model,
            ActivityPriceHistoryModel,
            (ActivityPriceHistoryModel.activity_id == activity_id,),
            owner=activity_id,
        )
        return model.to_dto()

    def append_staff_rule(
        self,
        staff_id: UUID,
        rate_type: StaffRateType | str,
        rate: Decimal | int | str,
        effective_from: date | str,
        activity_id: UUID | None = None,
        *,
        lesson_limit: int | None = None,
        penalty_trigger_percent: Decimal | None = None,
        penalty_percent: Decimal | None = None,
        extra_lesson_rate: Decimal | None = None,
        resync_activity_ids: list[UUID] | None = None,
    ) -> StaffBillingRule:
        """
        Append a staff billing rule and re-sync the journal of its month.

        Args:
            activity_id: Scope of the rule; None for every activity.
            resync_activity_ids: Activities whose journal is re-synced for
                the month of ``effective_from``.  Defaults to the rule's
                activity; a global rule re-syncs nothing unless told.

        Raises:
            StaffNotFoundError, ActivityNotFoundError, InvalidRuleError,
            EffectiveDateOrderError.
        """
        effective_from = parse_date(effective_from)
        rate_type = parse_enum_field(StaffRateType, "rate_type", rate_type)
        rate_value = _optional_decimal("rate", rate)
        if rate_value is None:
            raise InvalidRuleError("rate", rate, "must be a number")
        if lesson_limit is not None and (isinstance(lesson_limit, bool) or int(lesson_limit) < 0):
            raise InvalidRuleError("lesson_limit", lesson_limit, "must be a non-negative integer")

        self._staff.get_staff(staff_id)
        if activity_id is not None:
            self._rules.get_activity(activity_id)

        model = StaffBillingRuleModel(
            staff_id=staff_id,
            activity_id=activity_id,
            rate_type=rate_type.value,
            rate=rate_value,
            lesson_limit=int(lesson_limit) if lesson_limit is not None else None,
            penalty_trigger_percent=_optional_decimal("penalty_trigger_percent", penalty_trigger_percent),
            penalty_percent=_optional_decimal("penalty_percent", penalty_percent),
            extra_lesson_rate=_optional_decimal("extra_lesson_rate", extra_lesson_rate),
            effective_from=effective_from,
        )
        self._append(
            model,
            StaffBillingRuleModel,
            self._staff_owner(StaffBillingRuleModel, staff_id, activity_id),
            owner=(staff_id, activity_id),
        )

        if resync_activity_ids is None:
            resync_activity_ids = [activity_id] if activity_id is not None else []
        self.resync(resync_activity_ids, effective_from)
        return model.to_dto()

    def append_manual_rate(
        self,
        staff_id: UUID,
        rate_type: ManualRateType | str,
        rate_value: Decimal | int | str,
        effective_from: date | str,
        activity_id: UUID | None = None,
    ) -> ManualRate:
        """
        Append a manual rate for a staff member in manual accrual mode.

        Raises:
            StaffNotFoundError, ActivityNotFoundError, InvalidRuleError,
            EffectiveDateOrderError.
        """
        effective_from = parse_date(effective_from)
        rate_type = parse_enum_field(ManualRateType, "manual_rate_type", rate_type)
        value = _optional_decimal("manual_rate_value", rate_value)
        if value is None:
            raise InvalidRuleError("manual_rate_value", rate_value, "must be a number")

        self._staff.get_staff(staff_id)
        if activity_id is not None:
            self._rules.get_activity(activity_id)

        model = StaffManualRateModel(
            staff_id=staff_id,
            activity_id=activity_id,
            manual_rate_type=rate_type.value,
            manual_rate_value=value,
            effective_from=effective_from,
        )
        self._append(
            model,
            StaffManualRateModel,
            self._staff_owner(StaffManualRateModel, staff_id, activity_id),
            owner=(staff_id, activity_id),
        )
        return model.to_dto()

    def resync(self, activity_ids: list[UUID], on_date: date) -> list[SyncReport]:
        """Re-sync the staff journal of each activity for the month of ``on_date``."""
        month = DateRange.month_of(on_date)
        return [self.synchronizer.sync_for_period(a, month) for a in activity_ids]

    # -------------------------------------------------------------------------
    # Append-then-close-out
    # -------------------------------------------------------------------------

    @staticmethod
    def _staff_owner(model_cls, staff_id: UUID, activity_id: UUID | None) -> tuple:
        if activity_id is None:
            return (model_cls.staff_id == staff_id, model_cls.activity_id.is_(None))
        return (model_cls.staff_id == staff_id, model_cls.activity_id == activity_id)

    def _append(self, new: TrackedBase, model_cls, owner_filter: tuple, owner: object) -> None:
        with self.session.begin_nested():
            latest = self.session.execute(
                select(model_cls)
                .where(*owner_filter)
                .order_by(model_cls.effective_from.desc(), model_cls.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()

            if latest is not None:
                blocked = latest.effective_from >= new.effective_from or (
                    latest.effective_to is not None
                    and latest.effective_to > new.effective_from
                )
                if blocked:
                    raise EffectiveDateOrderError(
                        owner, latest.effective_from, new.effective_from
                    )

            open_records = self.session.execute(
                select(model_cls).where(*owner_filter, model_cls.effective_to.is_(None))
            ).scalars().all()
            for record in open_records:
                record.effective_to = new.effective_from
            self.session.flush()

            self.session.add(new)
            self.session.flush()

        logger.info(
            "rate_history_appended",
            extra={
                "table": model_cls.__tablename__,
                "owner": str(owner),
                "effective_from": new.effective_from,
                "closed": len(open_records),
            },
        )
