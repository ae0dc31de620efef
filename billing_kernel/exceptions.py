"""
Typed Exception Hierarchy for the Billing Engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingEngineError:

    BillingEngineError (base)
    |
    +-- ValidationError
    |   +-- InvalidManualValueError
    |   +-- InvalidDateError
    |   +-- InvalidRuleError
    |
    +-- RuleHistoryError
    |   +-- OverlappingIntervalError
    |   +-- EffectiveDateOrderError
    |
    +-- NotFoundError
    |   +-- ActivityNotFoundError
    |   +-- EnrollmentNotFoundError
    |   +-- StaffNotFoundError
    |   +-- GroupLessonNotFoundError
    |   +-- PayoutNotFoundError
    |
    +-- PersistenceError
        +-- AttendanceWriteError
        +-- JournalWriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_MANUAL_VALUE        | Manual numeric input is not a number
                | INVALID_DATE                | Date string is not ISO YYYY-MM-DD
                | INVALID_RULE                | Unknown rule/rate/deduction type or shape
----------------|-----------------------------|-----------------------------------------
Rule history    | OVERLAPPING_INTERVAL        | Two windows of one owner overlap
                | EFFECTIVE_DATE_ORDER        | New record starts on/before the open one
----------------|-----------------------------|-----------------------------------------
Not found       | ACTIVITY_NOT_FOUND          | Activity id does not exist
                | ENROLLMENT_NOT_FOUND        | Enrollment id does not exist
                | STAFF_NOT_FOUND             | Staff id does not exist
                | GROUP_LESSON_NOT_FOUND      | Group lesson id does not exist
                | PAYOUT_NOT_FOUND            | Payout id does not exist
----------------|-----------------------------|-----------------------------------------
Persistence     | ATTENDANCE_WRITE_FAILED     | Single attendance write failed
                | JOURNAL_WRITE_FAILED        | One journal upsert/delete in a batch failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. "Configuration missing" (no controller config, no resolvable rule) is NOT
   an exception.  Engines return None / zero and the caller treats it as
   "no charge".

2. Single-record writes surface PersistenceError to the caller:

    try:
        service.set_status(enrollment_id, day, "present")
    except AttendanceWriteError as e:
        show_error(e.code, e.enrollment_id, e.on_date)

3. Batch writes never raise for partial failure.  JournalWriteError
   instances are collected in the SyncReport and logged.
"""


class BillingEngineError(Exception):
    """
    Base exception for all billing engine errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_ENGINE_ERROR"


# Validation exceptions


class ValidationError(BillingEngineError):
    """Input rejected at the boundary before calculation."""

    code: str = "VALIDATION_FAILED"


class InvalidManualValueError(ValidationError):
    """A manual numeric entry is not a number."""

    code: str = "INVALID_MANUAL_VALUE"

    def __init__(self, raw_value: object):
        self.raw_value = raw_value
        super().__init__(f"Manual value is not numeric: {raw_value!r}")


class InvalidDateError(ValidationError):
    """A date value is malformed."""

    code: str = "INVALID_DATE"

    def __init__(self, raw_value: object):
        self.raw_value = raw_value
        super().__init__(f"Malformed date: {raw_value!r}")


class InvalidRuleError(ValidationError):
    """A billing rule, staff rule or deduction has an invalid shape."""

    code: str = "INVALID_RULE"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# Rule history exceptions


class RuleHistoryError(BillingEngineError):
    """Base exception for time-boxed rule history problems."""

    code: str = "RULE_HISTORY_ERROR"


class OverlappingIntervalError(RuleHistoryError):
    """Two records of the same owner have overlapping effective windows."""

    code: str = "OVERLAPPING_INTERVAL"

    def __init__(self, owner_key: object, first_id: object, second_id: object):
        self.owner_key = owner_key
        self.first_id = first_id
        self.second_id = second_id
        super().__init__(
            f"Overlapping effective windows for {owner_key}: "
            f"{first_id} and {second_id}"
        )


class EffectiveDateOrderError(RuleHistoryError):
    """A new record does not start strictly after the currently open one."""

    code: str = "EFFECTIVE_DATE_ORDER"

    def __init__(self, owner_key: object, open_from: object, new_from: object):
        self.owner_key = owner_key
        self.open_from = open_from
        self.new_from = new_from
        super().__init__(
            f"New record for {owner_key} starts {new_from}, "
            f"not after the open record starting {open_from}"
        )


# Not-found exceptions


class NotFoundError(BillingEngineError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class ActivityNotFoundError(NotFoundError):
    """Activity with given ID was not found."""

    code: str = "ACTIVITY_NOT_FOUND"

    def __init__(self, activity_id: object):
        self.activity_id = activity_id
        super().__init__(f"Activity not found: {activity_id}")


class EnrollmentNotFoundError(NotFoundError):
    """Enrollment with given ID was not found."""

    code: str = "ENROLLMENT_NOT_FOUND"

    def __init__(self, enrollment_id: object):
        self.enrollment_id = enrollment_id
        super().__init__(f"Enrollment not found: {enrollment_id}")


class StaffNotFoundError(NotFoundError):
    """Staff member with given ID was not found."""

    code: str = "STAFF_NOT_FOUND"

    def __init__(self, staff_id: object):
        self.staff_id = staff_id
        super().__init__(f"Staff member not found: {staff_id}")


class GroupLessonNotFoundError(NotFoundError):
    """Group lesson with given ID was not found."""

    code: str = "GROUP_LESSON_NOT_FOUND"

    def __init__(self, group_lesson_id: object):
        self.group_lesson_id = group_lesson_id
        super().__init__(f"Group lesson not found: {group_lesson_id}")


class PayoutNotFoundError(NotFoundError):
    """Payout with given ID was not found."""

    code: str = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: object):
        self.payout_id = payout_id
        super().__init__(f"Payout not found: {payout_id}")


# Persistence exceptions


class PersistenceError(BillingEngineError):
    """Base exception for record store write failures."""

    code: str = "PERSISTENCE_FAILED"


class AttendanceWriteError(PersistenceError):
    """Writing a single attendance record failed."""

    code: str = "ATTENDANCE_WRITE_FAILED"

    def __init__(self, enrollment_id: object, on_date: object, reason: str):
        self.enrollment_id = enrollment_id
        self.on_date = on_date
        self.reason = reason
        super().__init__(
            f"Attendance write failed for {enrollment_id} on {on_date}: {reason}"
        )


class JournalWriteError(PersistenceError):
    """One journal upsert/delete in a reconciliation batch failed."""

    code: str = "JOURNAL_WRITE_FAILED"

    def __init__(self, staff_id: object, on_date: object, operation: str, reason: str):
        self.staff_id = staff_id
        self.on_date = on_date
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Journal {operation} failed for staff {staff_id} on {on_date}: {reason}"
        )
