"""
Deduction Engine.

Pure functions with deterministic behavior. No I/O.

Applies a staff member's ordered deduction list to a gross accrual.  Each
deduction is computed against the running remaining amount, so two 10%
deductions on 100 leave 81, not 80.

    percent: amount = running x value / 100
    fixed:   amount = min(value, running)

Once the running amount reaches zero every later deduction is 0.  The net
amount never goes below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from billing_kernel.db.types import HUNDRED, ZERO, round_money, to_decimal
from billing_kernel.domain.rules import Deduction, DeductionType
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.deductions")


@dataclass(frozen=True)
class AppliedDeduction:
    """One breakdown line."""

    label: str
    type: DeductionType
    value: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "type": self.type.value,
            "value": str(self.value),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class DeductionResult:
    gross_amount: Decimal
    final_amount: Decimal
    deductions_applied: tuple[AppliedDeduction, ...] = ()

    @property
    def total_deducted(self) -> Decimal:
        return sum((d.amount for d in self.deductions_applied), ZERO)

    def breakdown(self) -> list[dict[str, Any]]:
        """JSON-safe breakdown for storage on a journal row."""
        return [d.to_dict() for d in self.deductions_applied]


def apply_deductions(
    gross_amount: Decimal,
    deductions: Sequence[Deduction],
) -> DeductionResult:
    """
    Apply ``deductions`` in list order to ``gross_amount``.

    Returns:
        DeductionResult with the net amount and one breakdown line per
        deduction (including zero-amount lines).
    """
    gross = to_decimal(gross_amount)
    running = gross
    applied: list[AppliedDeduction] = []

    for deduction in deductions:
        if running <= 0:
            amount = ZERO
        elif deduction.type == DeductionType.PERCENT:
            amount = round_money(running * deduction.value / HUNDRED)
        else:
            amount = round_money(min(deduction.value, running))
        running -= amount
        applied.append(
            AppliedDeduction(
                label=deduction.label,
                type=deduction.type,
                value=deduction.value,
                amount=amount,
            )
        )

    final = max(ZERO, round_money(running))

    if applied:
        logger.debug(
            "deductions_applied",
            extra={
                "gross_amount": gross,
                "final_amount": final,
                "deduction_count": len(applied),
            },
        )
    return DeductionResult(
        gross_amount=gross,
        final_amount=final,
        deductions_applied=tuple(applied),
    )
