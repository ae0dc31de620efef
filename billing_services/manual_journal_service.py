"""
Manual journal entries for staff in manual accrual mode.

An entry is a quantity typed against (staff, activity, date).  With a manual
rate effective on the date it is priced as ``quantity x rate``; without one
the figure is taken as the amount itself.  Blank or zero removes the entry.
Manual rows carry no deductions and are never touched by the journal
synchronizer.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from billing_engines.manual_rates import manual_accrual, manual_rate_for_date
from billing_kernel.db.types import round_money
from billing_kernel.domain.dtos import JournalEntryInfo
from billing_kernel.domain.validation import parse_date, parse_manual_value
from billing_kernel.exceptions import InvalidManualValueError, JournalWriteError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.journal import StaffJournalEntryModel
from billing_kernel.selectors import RuleSelector, StaffSelector
from billing_services.base import BaseService

logger = get_logger("services.manual_journal")


class ManualJournalService(BaseService):

    def record_manual_entry(
        self,
        staff_id: UUID,
        activity_id: UUID | None,
        on_date: date | str,
        raw_quantity: object,
    ) -> JournalEntryInfo | None:
        """
        Upsert or delete the manual row of ``(staff, activity, date)``.

        Returns:
            The stored row, or None when the entry was removed.

        Raises:
            StaffNotFoundError: If the staff member does not exist.
            InvalidManualValueError: If the input is not a number or is
                negative.
            JournalWriteError: If the store rejects the write.
        """
        on_date = parse_date(on_date)
        quantity = parse_manual_value(raw_quantity)
        if quantity is not None and quantity < 0:
            raise InvalidManualValueError(raw_quantity)
        staff = StaffSelector(self.session).get_staff(staff_id)
        if activity_id is not None:
            RuleSelector(self.session).get_activity(activity_id)

        with LogContext.bind(staff_id=staff.id, activity_id=activity_id):
            if quantity is None or quantity == 0:
                self._delete(staff_id, activity_id, on_date)
                return None

            rate = manual_rate_for_date(
                RuleSelector(self.session).manual_rates(staff_id), on_date, activity_id
            )
            if rate is None:
                amount = round_money(quantity)
                base_amount = amount
                note = None
            else:
                accrual = manual_accrual(rate, quantity)
                amount = accrual.amount
                base_amount = round_money(rate.rate_value)
                note = accrual.note

            try:
                with self.session.begin_nested():
                    model = self._find(staff_id, activity_id, on_date)
                    if model is None:
                        model = StaffJournalEntryModel(
                            staff_id=staff_id,
                            activity_id=activity_id,
                            date=on_date,
                            is_manual_override=True,
                        )
                        self.session.add(model)
                    model.amount = amount
                    model.base_amount = base_amount
                    model.deductions_applied = []
                    model.notes = note
                    self.session.flush()
            except SQLAlchemyError as exc:
                raise JournalWriteError(staff_id, on_date, "upsert", str(exc)) from exc

            logger.info(
                "manual_journal_entry_recorded",
                extra={
                    "on_date": on_date,
                    "quantity": quantity,
                    "amount": amount,
                    "has_rate": rate is not None,
                },
            )
            return model.to_dto()

    def _find(
        self, staff_id: UUID, activity_id: UUID | None, on_date: date
    ) -> StaffJournalEntryModel | None:
        query = select(StaffJournalEntryModel).where(
            StaffJournalEntryModel.staff_id == staff_id,
            StaffJournalEntryModel.date == on_date,
            StaffJournalEntryModel.is_manual_override.is_(True),
        )
        if activity_id is None:
            query = query.where(StaffJournalEntryModel.activity_id.is_(None))
        else:
            query = query.where(StaffJournalEntryModel.activity_id == activity_id)
        return self.session.execute(
            query.order_by(StaffJournalEntryModel.created_at).limit(1)
        ).scalar_one_or_none()

    def _delete(self, staff_id: UUID, activity_id: UUID | None, on_date: date) -> None:
        try:
            with self.session.begin_nested():
                model = self._find(staff_id, activity_id, on_date)
                if model is not None:
                    self.session.delete(model)
                    self.session.flush()
        except SQLAlchemyError as exc:
            raise JournalWriteError(staff_id, on_date, "delete", str(exc)) from exc
        logger.info("manual_journal_entry_removed", extra={"on_date": on_date})
