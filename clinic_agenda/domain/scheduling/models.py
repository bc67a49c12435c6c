"""Scheduling domain models - appointments, blocks and conflict reports"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(str, Enum):
    APPOINTMENT = "appointment"
    BLOCK = "block"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RecurrenceType(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"


# Days between consecutive occurrences
RECURRENCE_STEP_DAYS = {
    RecurrenceType.NONE: 0,
    RecurrenceType.WEEKLY: 7,
    RecurrenceType.BIWEEKLY: 14,
}


class ResolutionStrategy(str, Enum):
    ABORT = "abort"
    KEEP_EXISTING = "keep_existing"
    CANCEL_EXISTING = "cancel_existing"


class MutationScope(str, Enum):
    SINGLE = "single"
    ALL_FUTURE = "all_future"


class MutationAction(str, Enum):
    EDIT = "edit"
    DELETE = "delete"


class TimeInterval(BaseModel):
    """Half-open time range [start, end)"""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_valid(self) -> bool:
        return self.end > self.start

    def overlaps(self, other: "TimeInterval") -> bool:
        # Touching endpoints do not overlap
        return self.start < other.end and other.start < self.end

    def shifted(self, start_delta: timedelta, end_delta: Optional[timedelta] = None) -> "TimeInterval":
        if end_delta is None:
            end_delta = start_delta
        return TimeInterval(start=self.start + start_delta, end=self.end + end_delta)


class RecurrencePattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: RecurrenceType = RecurrenceType.NONE
    count: int = 1

    @property
    def step(self) -> timedelta:
        return timedelta(days=RECURRENCE_STEP_DAYS[self.type])

    @property
    def occurrences(self) -> int:
        if self.type == RecurrenceType.NONE:
            return 1
        return self.count


class Appointment(BaseModel):
    id: str
    practitioner_id: str
    patient_id: str
    interval: TimeInterval
    series_id: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    value: Decimal = Decimal("0")

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED


class Block(BaseModel):
    id: str
    practitioner_id: str
    interval: TimeInterval
    reason: Optional[str] = None
    series_id: Optional[str] = None
    all_day: bool = False


class OccupiedItem(BaseModel):
    """An appointment or block as seen by the conflict detector"""

    id: str
    kind: ItemKind
    interval: TimeInterval
    series_id: Optional[str] = None
    status: Optional[AppointmentStatus] = None

    @property
    def is_active(self) -> bool:
        # Blocks carry no status and are always active
        return self.status != AppointmentStatus.CANCELLED


class ConflictReport(BaseModel):
    conflicting_appointment_ids: list[str] = Field(default_factory=list)
    conflicting_block_ids: list[str] = Field(default_factory=list)
    total_count: int = 0

    @property
    def has_conflicts(self) -> bool:
        return self.total_count > 0

    @classmethod
    def from_items(cls, items: Iterable[OccupiedItem]) -> "ConflictReport":
        appointment_ids = []
        block_ids = []
        for item in items:
            if item.kind == ItemKind.BLOCK:
                block_ids.append(item.id)
            else:
                appointment_ids.append(item.id)
        return cls(
            conflicting_appointment_ids=appointment_ids,
            conflicting_block_ids=block_ids,
            total_count=len(appointment_ids) + len(block_ids),
        )

    def merge(self, other: "ConflictReport") -> "ConflictReport":
        return ConflictReport(
            conflicting_appointment_ids=self.conflicting_appointment_ids
            + other.conflicting_appointment_ids,
            conflicting_block_ids=self.conflicting_block_ids + other.conflicting_block_ids,
            total_count=self.total_count + other.total_count,
        )

    @classmethod
    def merge_all(cls, reports: Iterable["ConflictReport"]) -> "ConflictReport":
        merged = cls()
        for report in reports:
            merged = merged.merge(report)
        return merged


class AppointmentDraft(BaseModel):
    """Validated request to create one or more appointments"""

    practitioner_id: str
    patient_id: str
    anchor: TimeInterval
    pattern: RecurrencePattern = RecurrencePattern()
    value: Decimal = Decimal("0")

    kind: ClassVar[ItemKind] = ItemKind.APPOINTMENT

    def fields_for(self, interval: TimeInterval, series_id: Optional[str]) -> dict[str, Any]:
        return {
            "practitioner_id": self.practitioner_id,
            "patient_id": self.patient_id,
            "interval": interval,
            "series_id": series_id,
            "status": AppointmentStatus.SCHEDULED,
            "value": self.value,
        }


class BlockDraft(BaseModel):
    """Validated request to block one or more periods of a practitioner's calendar"""

    practitioner_id: str
    anchor: TimeInterval
    pattern: RecurrencePattern = RecurrencePattern()
    reason: Optional[str] = None
    all_day: bool = False

    kind: ClassVar[ItemKind] = ItemKind.BLOCK

    def fields_for(self, interval: TimeInterval, series_id: Optional[str]) -> dict[str, Any]:
        return {
            "practitioner_id": self.practitioner_id,
            "interval": interval,
            "series_id": series_id,
            "reason": self.reason,
            "all_day": self.all_day,
        }


ScheduleDraft = Union[AppointmentDraft, BlockDraft]
