"""
Staff payouts and balance.

Payouts are independent of the journal.  Deleting a payout is a soft
delete stamped from the injected Clock; deleted payouts no longer count
towards the balance.

    balance = sum(journal amounts, auto and manual) - sum(live payouts)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_config import BillingConfig
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import PayoutInfo
from billing_kernel.domain.validation import parse_date, parse_manual_value, parse_period
from billing_kernel.exceptions import InvalidManualValueError, PayoutNotFoundError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.journal import StaffPayoutModel
from billing_kernel.selectors import JournalSelector, StaffSelector
from billing_services.base import BaseService

logger = get_logger("services.payout")


@dataclass(frozen=True)
class StaffBalance:
    staff_id: UUID
    accrued: Decimal
    paid: Decimal

    @property
    def balance(self) -> Decimal:
        return self.accrued - self.paid


class PayoutService(BaseService):

    def __init__(
        self,
        session: Session,
        config: BillingConfig | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, config)
        self._clock = clock or SystemClock()
        self._staff = StaffSelector(session)

    def record_payout(
        self,
        staff_id: UUID,
        amount: object,
        payout_date: date | str,
        notes: str | None = None,
    ) -> PayoutInfo:
        """
        Raises:
            StaffNotFoundError: If the staff member does not exist.
            InvalidManualValueError: If the amount is missing, not a number
                or not positive.
        """
        value = parse_manual_value(amount)
        if value is None or value <= 0:
            raise InvalidManualValueError(amount)
        payout_date = parse_date(payout_date)
        self._staff.get_staff(staff_id)

        model = StaffPayoutModel(
            staff_id=staff_id,
            amount=round_money(value),
            payout_date=payout_date,
            notes=notes,
        )
        self.session.add(model)
        self.session.flush()

        with LogContext.bind(staff_id=staff_id):
            logger.info(
                "payout_recorded",
                extra={"payout_id": model.id, "amount": model.amount, "payout_date": payout_date},
            )
        return model.to_dto()

    def delete_payout(self, payout_id: UUID, note: str | None = None) -> PayoutInfo:
        """
        Soft-delete a payout.  Deleting an already deleted payout is a no-op.

        Raises:
            PayoutNotFoundError: If no payout has this id.
        """
        model = self.session.get(StaffPayoutModel, payout_id)
        if model is None:
            raise PayoutNotFoundError(payout_id)
        if not model.is_deleted:
            model.is_deleted = True
            model.deleted_at = self._clock.now()
            model.deleted_note = note
            self.session.flush()
            with LogContext.bind(staff_id=model.staff_id):
                logger.info("payout_deleted", extra={"payout_id": payout_id})
        return model.to_dto()

    def balance(self, staff_id: UUID, period: DateRange | str | None = None) -> StaffBalance:
        """Accrued (all journal rows) against paid (live payouts), optionally within a period."""
        if period is not None:
            period = parse_period(period)
        self._staff.get_staff(staff_id)
        entries = JournalSelector(self.session).entries_for_staff(staff_id, period)
        payouts = self._staff.payouts(staff_id, period)
        return StaffBalance(
            staff_id=staff_id,
            accrued=round_money(sum((e.amount for e in entries), ZERO)),
            paid=round_money(sum((p.amount for p in payouts), ZERO)),
        )
