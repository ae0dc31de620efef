"""
Staff members, their billing rules and manual rate history.

Both rule tables are append-only histories: a superseded record only ever
gains an ``effective_to``.  ``activity_id IS NULL`` stores a rule that
applies to every activity of the staff member.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class StaffModel(TrackedBase):
    __tablename__ = "staff"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deductions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    accrual_mode: Mapped[str] = mapped_column(String(20), default="auto", nullable=False)

    def to_dto(self):
        from billing_kernel.domain.dtos import StaffInfo
        from billing_kernel.domain.rules import AccrualMode, parse_deductions

        return StaffInfo(
            id=self.id,
            full_name=self.full_name,
            deductions=parse_deductions(self.deductions),
            accrual_mode=AccrualMode(self.accrual_mode),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<StaffModel {self.full_name}>"


class StaffBillingRuleModel(TrackedBase):
    __tablename__ = "staff_billing_rules"

    staff_id: Mapped[UUID] = mapped_column(ForeignKey("staff.id"), nullable=False)
    activity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("activities.id"), nullable=True
    )
    rate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    lesson_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    penalty_trigger_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    penalty_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    extra_lesson_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("idx_staff_rule_owner", "staff_id", "activity_id", "effective_from"),
        Index("idx_staff_rule_activity", "activity_id"),
    )

    def to_dto(self):
        from billing_kernel.domain.rules import StaffBillingRule, StaffRateType
        from billing_kernel.domain.scope import scope_from_activity_id

        return StaffBillingRule(
            id=self.id,
            staff_id=self.staff_id,
            scope=scope_from_activity_id(self.activity_id),
            rate_type=StaffRateType(self.rate_type),
            rate=self.rate,
            lesson_limit=self.lesson_limit,
            penalty_trigger_percent=self.penalty_trigger_percent,
            penalty_percent=self.penalty_percent,
            extra_lesson_rate=self.extra_lesson_rate,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            created_at=self.created_at,
        )


class StaffManualRateModel(TrackedBase):
    __tablename__ = "staff_manual_rate_history"

    staff_id: Mapped[UUID] = mapped_column(ForeignKey("staff.id"), nullable=False)
    activity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("activities.id"), nullable=True
    )
    manual_rate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    manual_rate_value: Mapped[Decimal] = mapped_column(nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("idx_manual_rate_owner", "staff_id", "activity_id", "effective_from"),
    )

    def to_dto(self):
        from billing_kernel.domain.rules import ManualRate, ManualRateType
        from billing_kernel.domain.scope import scope_from_activity_id

        return ManualRate(
            id=self.id,
            staff_id=self.staff_id,
            scope=scope_from_activity_id(self.activity_id),
            rate_type=ManualRateType(self.manual_rate_type),
            rate_value=self.manual_rate_value,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            created_at=self.created_at,
        )
