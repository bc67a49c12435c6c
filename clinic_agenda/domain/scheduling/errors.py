"""Scheduling domain exceptions"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ConflictReport


class SchedulingError(Exception):
    """Base class for scheduling failures"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidIntervalError(SchedulingError):
    """Raised when an interval does not end after it starts"""


class NotRecurringError(SchedulingError):
    """Raised when a series-wide scope targets an item without a series"""


class ItemNotFoundError(SchedulingError):
    """Raised when the backend has no item with the requested id"""


class InvalidTransitionError(SchedulingError):
    """Raised when a conflict decision is taken twice for one operation"""


class ConflictPending(SchedulingError):
    """
    Not a failure: the operation overlaps existing items and needs a
    resolution strategy from the user before anything is written.
    """

    def __init__(self, report: "ConflictReport"):
        self.report = report
        super().__init__(describe_conflicts(report))


class CollaboratorError(SchedulingError):
    """Raised when the clinic backend rejects a call or cannot be reached"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        incomplete_ids: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        # Ids left behind by a batch that could not be rolled back
        self.incomplete_ids = incomplete_ids or []

    @property
    def batch_incomplete(self) -> bool:
        return bool(self.incomplete_ids)


def describe_conflicts(report: "ConflictReport") -> str:
    """Build the user-facing question shown when a batch is conflicted"""
    appointments = len(set(report.conflicting_appointment_ids))
    blocks = len(set(report.conflicting_block_ids))

    parts = []
    if appointments:
        noun = "appointment" if appointments == 1 else "appointments"
        parts.append(f"{appointments} existing {noun}")
    if blocks:
        noun = "block" if blocks == 1 else "blocks"
        parts.append(f"{blocks} existing {noun}")

    if not parts:
        return "No conflicts found."

    verb = "conflicts" if appointments + blocks == 1 else "conflict"
    return f"{' and '.join(parts)} {verb} with this schedule. Keep or cancel them?"
