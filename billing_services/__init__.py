"""
Billing Services -- stateful orchestration over the billing engines.

Services receive a SQLAlchemy session, read through selectors, compute
with the pure engines and write with ``flush()``.  The caller owns the
transaction.
"""

from billing_services.attendance_service import AttendanceService, FillReport
from billing_services.cache import AttendanceCache
from billing_services.garden_service import GardenAttendanceService, GardenMarkResult
from billing_services.group_lesson_service import GroupLessonJournalService, GroupLessonReport
from billing_services.journal_sync import StaffJournalSynchronizer, SyncReport
from billing_services.manual_journal_service import ManualJournalService
from billing_services.payout_service import PayoutService, StaffBalance
from billing_services.rate_history_service import RateHistoryService

__all__ = [
    "AttendanceCache",
    "AttendanceService",
    "FillReport",
    "GardenAttendanceService",
    "GardenMarkResult",
    "GroupLessonJournalService",
    "GroupLessonReport",
    "ManualJournalService",
    "PayoutService",
    "RateHistoryService",
    "StaffBalance",
    "StaffJournalSynchronizer",
    "SyncReport",
]
