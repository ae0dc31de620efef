"""Read-only selectors returning domain DTOs."""

from billing_kernel.selectors.attendance_selector import AttendanceSelector
from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.group_lesson_selector import GroupLessonSelector
from billing_kernel.selectors.journal_selector import JournalSelector
from billing_kernel.selectors.rule_selector import RuleSelector
from billing_kernel.selectors.staff_selector import StaffSelector
from billing_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "AttendanceSelector",
    "BaseSelector",
    "GroupLessonSelector",
    "JournalSelector",
    "RuleSelector",
    "StaffSelector",
    "TransactionSelector",
]
