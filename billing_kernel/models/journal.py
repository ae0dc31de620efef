"""
Staff journal entries and payouts.

Journal rows with ``is_manual_override = false`` are derived data owned by
the journal synchronizer: one per (staff, activity, group lesson, date).
Manual rows are typed in and never touched by reconciliation.  Payouts are
independent of the journal and are soft-deleted.
"""

import datetime as dt
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class StaffJournalEntryModel(TrackedBase):
    __tablename__ = "staff_journal_entries"

    staff_id: Mapped[UUID] = mapped_column(ForeignKey("staff.id"), nullable=False)
    activity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("activities.id"), nullable=True
    )
    group_lesson_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("group_lessons.id"), nullable=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    deductions_applied: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )
    is_manual_override: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    __table_args__ = (
        Index(
            "idx_journal_key",
            "staff_id",
            "activity_id",
            "group_lesson_id",
            "date",
            "is_manual_override",
        ),
        Index("idx_journal_activity_date", "activity_id", "date"),
    )

    def to_dto(self):
        from billing_kernel.domain.dtos import JournalEntryInfo

        return JournalEntryInfo(
            id=self.id,
            staff_id=self.staff_id,
            activity_id=self.activity_id,
            group_lesson_id=self.group_lesson_id,
            date=self.date,
            amount=self.amount,
            base_amount=self.base_amount,
            deductions_applied=tuple(self.deductions_applied or ()),
            is_manual_override=self.is_manual_override,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        kind = "manual" if self.is_manual_override else "auto"
        return f"<StaffJournalEntryModel {self.staff_id} {self.date} {self.amount} {kind}>"


class StaffPayoutModel(TrackedBase):
    __tablename__ = "staff_payouts"

    staff_id: Mapped[UUID] = mapped_column(ForeignKey("staff.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payout_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deleted_note: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    __table_args__ = (Index("idx_payout_staff_date", "staff_id", "payout_date"),)

    def to_dto(self):
        from billing_kernel.domain.dtos import PayoutInfo

        return PayoutInfo(
            id=self.id,
            staff_id=self.staff_id,
            amount=self.amount,
            payout_date=self.payout_date,
            notes=self.notes,
            is_deleted=self.is_deleted,
            deleted_at=self.deleted_at,
        )
