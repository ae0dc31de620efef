"""
AttendanceCache -- the explicit "optimistic map".

Holds the attendance marks of the periods a caller is working on, keyed by
``(enrollment_id, date)``.  After a successful write the service puts the
new mark here, so the accrual recomputation that follows sees the pending
state without re-reading the store.  A failed write leaves the cache as it
was.

A period is "loaded" once every mark of an activity for it has been put in
the cache; for a loaded period a missing key means "no mark".
"""

import threading
from collections.abc import Iterable
from datetime import date
from uuid import UUID

from billing_kernel.domain.calendar import DateRange
from billing_kernel.domain.dtos import AttendanceRecord


class AttendanceCache:

    def __init__(self):
        self._records: dict[tuple[UUID, date], AttendanceRecord] = {}
        self._loaded: set[tuple[UUID, DateRange]] = set()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    def get(self, enrollment_id: UUID, on_date: date) -> AttendanceRecord | None:
        with self._lock:
            return self._records.get((enrollment_id, on_date))

    def set(self, record: AttendanceRecord) -> None:
        with self._lock:
            self._records[(record.enrollment_id, record.date)] = record

    def invalidate(self, enrollment_id: UUID, on_date: date) -> None:
        """Forget one mark."""
        with self._lock:
            self._records.pop((enrollment_id, on_date), None)

    def invalidate_period(self, activity_id: UUID, period: DateRange) -> None:
        """Forget every mark of an activity within the period."""
        with self._lock:
            stale = [
                key for key, record in self._records.items()
                if record.activity_id == activity_id and record.date in period
            ]
            for key in stale:
                del self._records[key]
            self._loaded = {
                (a, p) for (a, p) in self._loaded
                if not (a == activity_id and p.start <= period.end and period.start <= p.end)
            }

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._loaded.clear()

    def load(self, activity_id: UUID, period: DateRange, records: Iterable[AttendanceRecord]) -> None:
        """Replace the activity's marks for the period with ``records``."""
        with self._lock:
            self.invalidate_period(activity_id, period)
            for record in records:
                self._records[(record.enrollment_id, record.date)] = record
            self._loaded.add((activity_id, period))

    def is_loaded(self, activity_id: UUID, period: DateRange) -> bool:
        with self._lock:
            return any(
                a == activity_id and p.start <= period.start and period.end <= p.end
                for (a, p) in self._loaded
            )

    def records_for(self, activity_id: UUID, period: DateRange) -> list[AttendanceRecord]:
        with self._lock:
            found = [
                r for r in self._records.values()
                if r.activity_id == activity_id and r.date in period
            ]
        return sorted(found, key=lambda r: (r.date, str(r.enrollment_id)))

    def present_records(self, activity_id: UUID, period: DateRange) -> list[AttendanceRecord]:
        return [r for r in self.records_for(activity_id, period) if r.is_present]
