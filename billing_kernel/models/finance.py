"""
Finance transactions produced by controller (garden) attendance.

Base tariff charges are ``income`` rows and food refunds are ``expense``
rows, keyed by (student, activity, date, type).
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class FinanceTransactionModel(TrackedBase):
    __tablename__ = "finance_transactions"

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    student_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("students.id"), nullable=True
    )
    activity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("activities.id"), nullable=True
    )
    staff_id: Mapped[UUID | None] = mapped_column(ForeignKey("staff.id"), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_transaction_student_date", "student_id", "date"),
        Index("idx_transaction_activity_date", "activity_id", "date"),
    )

    def to_dto(self):
        from billing_kernel.domain.dtos import TransactionInfo

        return TransactionInfo(
            id=self.id,
            type=self.type,
            amount=self.amount,
            date=self.date,
            student_id=self.student_id,
            activity_id=self.activity_id,
            staff_id=self.staff_id,
            description=self.description,
            category=self.category,
        )
