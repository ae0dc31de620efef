"""
Activity and activity price history.

An activity carries its current billing rules in ``billing_rules`` and,
for a controller activity, the tariff links in ``config``.  Price history
records time-box earlier (or future) rule sets per activity; for one
activity their ``[effective_from, effective_to)`` windows never overlap and
at most one has ``effective_to IS NULL``.
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class ActivityModel(TrackedBase):
    __tablename__ = "activities"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    billing_rules: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    default_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_journal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self):
        from billing_kernel.domain.dtos import ActivityInfo, ControllerConfig
        from billing_kernel.domain.rules import BillingRules

        return ActivityInfo(
            id=self.id,
            name=self.name,
            billing_rules=BillingRules.from_dict(self.billing_rules),
            default_price=self.default_price,
            controller_config=ControllerConfig.from_dict(self.config),
            is_active=self.is_active,
            auto_journal=self.auto_journal,
        )

    def __repr__(self) -> str:
        return f"<ActivityModel {self.name}>"


class ActivityPriceHistoryModel(TrackedBase):
    __tablename__ = "activity_price_history"

    activity_id: Mapped[UUID] = mapped_column(
        ForeignKey("activities.id"), nullable=False
    )
    billing_rules: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("idx_price_history_activity", "activity_id", "effective_from"),
    )

    def to_dto(self):
        from billing_kernel.domain.rules import BillingRules, PriceHistoryRecord

        return PriceHistoryRecord(
            id=self.id,
            activity_id=self.activity_id,
            billing_rules=BillingRules.from_dict(self.billing_rules),
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ActivityPriceHistoryModel {self.activity_id} "
            f"[{self.effective_from}, {self.effective_to})>"
        )
