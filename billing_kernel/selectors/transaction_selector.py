"""Read access to finance transactions."""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import TransactionInfo
from billing_kernel.models.finance import FinanceTransactionModel
from billing_kernel.selectors.base import BaseSelector


class TransactionSelector(BaseSelector):

    def for_student_on(self, student_id: UUID, on_date: date) -> list[TransactionInfo]:
        rows = self.session.execute(
            select(FinanceTransactionModel)
            .where(
                FinanceTransactionModel.student_id == student_id,
                FinanceTransactionModel.date == on_date,
            )
            .order_by(FinanceTransactionModel.type, FinanceTransactionModel.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]
