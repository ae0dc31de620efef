"""
Rule Interval Index.

Pure functions with deterministic behavior. No I/O.

Resolves the single time-boxed record (activity price history, staff billing
rule, manual rate) effective on a date.  Every record owns the half-open
window ``[effective_from, effective_to)``; ``effective_to = None`` is
unbounded.

Resolution order:
    1. Only records whose window contains the date are eligible.
    2. Where records carry a scope, a ForActivity record for the requested
       activity beats a Global one ("specific beats global").
    3. Several eligible records at the same specificity violate the
       non-overlap invariant.  The most recent one wins deterministically:
       latest effective_from, then latest created_at, then the later
       position in the input.

Usage:
    from billing_engines.rule_index import resolve, resolve_scoped

    record = resolve(price_history, date(2026, 2, 10))
    rule = resolve_scoped(staff_rules, date(2026, 2, 10), activity_id)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Sequence
from datetime import date
from typing import Generic, TypeVar
from uuid import UUID

from billing_kernel.domain.rules import (
    BillingRules,
    ManualRate,
    PriceHistoryRecord,
    StaffBillingRule,
    TimeBoxed,
)
from billing_kernel.domain.scope import ForActivity, Global
from billing_kernel.exceptions import OverlappingIntervalError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.rule_index")

R = TypeVar("R", bound=TimeBoxed)


def covers(record: TimeBoxed, on_date: date) -> bool:
    """True when ``on_date`` lies in ``[effective_from, effective_to)``."""
    if on_date < record.effective_from:
        return False
    return record.effective_to is None or on_date < record.effective_to


def _recency(position: int, record: TimeBoxed) -> tuple:
    created = record.created_at.timestamp() if record.created_at is not None else float("-inf")
    return (record.effective_from, created, position)


def resolve(records: Iterable[R], on_date: date) -> R | None:
    """
    The record effective on ``on_date``, or None.

    O(n) over the candidate set; the input need not be sorted.
    """
    best: tuple | None = None
    best_record: R | None = None
    matches = 0
    for position, record in enumerate(records):
        if not covers(record, on_date):
            continue
        matches += 1
        key = _recency(position, record)
        if best is None or key > best:
            best, best_record = key, record

    if matches > 1:
        logger.warning(
            "rule_overlap_resolved",
            extra={
                "on_date": on_date,
                "candidates": matches,
                "chosen_id": getattr(best_record, "id", None),
            },
        )
    return best_record


def resolve_scoped(
    records: Iterable[StaffBillingRule | ManualRate],
    on_date: date,
    activity_id: UUID | None,
) -> StaffBillingRule | ManualRate | None:
    """
    Resolve with specificity: a rule for ``activity_id`` beats a global rule.

    With ``activity_id = None`` only global rules are eligible.
    """
    specific = []
    global_ = []
    for record in records:
        if isinstance(record.scope, Global):
            global_.append(record)
        elif activity_id is not None and record.scope.matches(activity_id):
            specific.append(record)

    found = resolve(specific, on_date)
    if found is not None:
        return found
    return resolve(global_, on_date)


def owner_key(record: TimeBoxed) -> Hashable:
    """
    The key within which windows must not overlap.

    Price history is owned by its activity; staff rules and manual rates by
    ``(staff_id, activity_id or None)``.
    """
    if isinstance(record, PriceHistoryRecord):
        return record.activity_id
    if isinstance(record, (StaffBillingRule, ManualRate)):
        return (record.staff_id, record.activity_id)
    raise TypeError(f"No owner key for {type(record).__name__}")


def find_overlaps(
    records: Iterable[R],
    key: Callable[[R], Hashable] = owner_key,
) -> list[tuple[R, R]]:
    """Every pair of records of one owner whose windows overlap."""
    grouped: dict[Hashable, list[R]] = defaultdict(list)
    for record in records:
        grouped[key(record)].append(record)

    overlaps: list[tuple[R, R]] = []
    for group in grouped.values():
        ordered = sorted(group, key=lambda r: r.effective_from)
        for i, first in enumerate(ordered):
            for second in ordered[i + 1:]:
                if first.effective_to is not None and first.effective_to <= second.effective_from:
                    break
                overlaps.append((first, second))
    return overlaps


def assert_disjoint(
    records: Iterable[R],
    key: Callable[[R], Hashable] = owner_key,
) -> None:
    """
    Raises:
        OverlappingIntervalError: On the first pair of overlapping windows.
    """
    overlaps = find_overlaps(records, key)
    if overlaps:
        first, second = overlaps[0]
        raise OverlappingIntervalError(
            key(first), getattr(first, "id", None), getattr(second, "id", None)
        )


class RuleIntervalIndex(Generic[R]):
    """
    Records pre-grouped by owner key, so a lookup scans one owner's history
    instead of the whole set.
    """

    def __init__(
        self,
        records: Iterable[R],
        key: Callable[[R], Hashable] = owner_key,
    ):
        self._key = key
        self._by_owner: dict[Hashable, list[R]] = defaultdict(list)
        for record in records:
            self._by_owner[key(record)].append(record)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_owner.values())

    def owners(self) -> list[Hashable]:
        return list(self._by_owner)

    def records_for(self, owner: Hashable) -> Sequence[R]:
        return tuple(self._by_owner.get(owner, ()))

    def resolve(self, owner: Hashable, on_date: date) -> R | None:
        return resolve(self._by_owner.get(owner, ()), on_date)

    def resolve_for_staff(
        self, staff_id: UUID, activity_id: UUID | None, on_date: date
    ) -> R | None:
        """Staff-owned records: ``(staff_id, activity_id)`` first, then ``(staff_id, None)``."""
        if activity_id is not None:
            found = self.resolve((staff_id, activity_id), on_date)
            if found is not None:
                return found
        return self.resolve((staff_id, None), on_date)


def billing_rules_for_date(
    activity_rules: BillingRules,
    price_history: Iterable[PriceHistoryRecord],
    on_date: date,
) -> BillingRules:
    """
    The activity's rules on ``on_date``: the price history record covering
    the date, else the activity's own current rules.
    """
    record = resolve(price_history, on_date)
    if record is not None:
        return record.billing_rules
    return activity_rules


def responsible_staff_rule(
    staff_rules: Sequence[StaffBillingRule],
    activity_id: UUID,
    on_date: date,
) -> StaffBillingRule | None:
    """
    The billing rule of the staff member responsible for an activity on a date.

    The responsible staff member is the owner of a rule for this exact
    activity covering the date; failing that, the owner of a global rule
    covering the date.  That staff member's own rules are then resolved with
    specific-beats-global.
    """
    specific = [
        r for r in staff_rules
        if isinstance(r.scope, ForActivity) and r.scope.activity_id == activity_id
    ]
    owner_rule = resolve(specific, on_date)
    if owner_rule is None:
        owner_rule = resolve((r for r in staff_rules if isinstance(r.scope, Global)), on_date)
    if owner_rule is None:
        return None

    own_rules = [r for r in staff_rules if r.staff_id == owner_rule.staff_id]
    return resolve_scoped(own_rules, on_date, activity_id)
