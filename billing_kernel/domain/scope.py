"""
Rule scope: a rule applies either to every activity of its owner (Global)
or to one activity (ForActivity).

Resolution is by specificity: a ForActivity rule that matches beats a
Global rule covering the same date.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class Global:
    """Applies to all activities of the owner."""

    specificity = 0

    @property
    def activity_id(self) -> None:
        return None

    def matches(self, activity_id: UUID | None) -> bool:
        return True


@dataclass(frozen=True)
class ForActivity:
    """Applies to exactly one activity."""

    activity_id: UUID

    specificity = 1

    def matches(self, activity_id: UUID | None) -> bool:
        return activity_id == self.activity_id


Scope = Global | ForActivity

GLOBAL = Global()


def scope_from_activity_id(activity_id: UUID | None) -> Scope:
    """Map the stored nullable activity_id column to a Scope."""
    if activity_id is None:
        return GLOBAL
    return ForActivity(activity_id)
