"""
ORM models for the billing engine.

Each model mirrors a DTO in ``billing_kernel.domain`` and converts to it
through ``to_dto()``.  Engines never see these classes.
"""

from billing_kernel.models.activity import ActivityModel, ActivityPriceHistoryModel
from billing_kernel.models.attendance import AttendanceModel
from billing_kernel.models.finance import FinanceTransactionModel, TransactionType
from billing_kernel.models.group_lesson import (
    GroupLessonModel,
    GroupLessonSessionModel,
    GroupLessonStaffModel,
)
from billing_kernel.models.journal import StaffJournalEntryModel, StaffPayoutModel
from billing_kernel.models.staff import (
    StaffBillingRuleModel,
    StaffManualRateModel,
    StaffModel,
)
from billing_kernel.models.student import EnrollmentModel, StudentModel

__all__ = [
    "ActivityModel",
    "ActivityPriceHistoryModel",
    "AttendanceModel",
    "EnrollmentModel",
    "FinanceTransactionModel",
    "GroupLessonModel",
    "GroupLessonSessionModel",
    "GroupLessonStaffModel",
    "StaffBillingRuleModel",
    "StaffJournalEntryModel",
    "StaffManualRateModel",
    "StaffModel",
    "StaffPayoutModel",
    "StudentModel",
    "TransactionType",
    "import_all_models",
]


def import_all_models() -> None:
    """Make sure every table is registered on Base.metadata."""
    from billing_kernel.models import (  # noqa: F401
        activity,
        attendance,
        finance,
        group_lesson,
        journal,
        staff,
        student,
    )
