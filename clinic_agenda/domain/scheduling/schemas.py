"""Scheduling schemas - request and response payloads for the HTTP layer"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...config import MAX_RECURRENCE_COUNT
from ...shared.validators import clamp, to_finite_decimal
from .models import (
    AppointmentStatus,
    ConflictReport,
    ItemKind,
    RecurrenceType,
    ResolutionStrategy,
    TimeInterval,
)


def _clamp_count(value: Any) -> Any:
    # Out-of-range integral counts are clamped, not rejected; anything else
    # (fractions, text, bools) falls through to type validation
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(value)
        except ValueError:
            return value
    if isinstance(value, int):
        return clamp(value, 1, MAX_RECURRENCE_COUNT)
    return value


def _money(value: Any) -> Any:
    amount = to_finite_decimal(value)
    if amount is not None and amount < 0:
        raise ValueError("Value must be zero or positive")
    return amount


class AppointmentCreate(BaseModel):
    """Schema for creating appointments (optionally recurring)"""

    practitionerId: str = Field(min_length=1)
    patientId: str = Field(min_length=1)
    startsAt: datetime
    endsAt: Optional[datetime] = None
    durationMinutes: Optional[int] = None
    value: Decimal
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrenceCount: int = 1
    strategy: Optional[ResolutionStrategy] = None

    @field_validator("recurrenceCount", mode="before")
    @classmethod
    def clamp_recurrence_count(cls, v):
        return _clamp_count(v)

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v):
        return _money(v)


class BlockCreate(BaseModel):
    """Schema for blocking a practitioner's calendar"""

    practitionerId: str = Field(min_length=1)
    startsAt: datetime
    endsAt: Optional[datetime] = None
    durationMinutes: Optional[int] = None
    reason: Optional[str] = None
    allDay: bool = False
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrenceCount: int = 1
    strategy: Optional[ResolutionStrategy] = None

    @field_validator("recurrenceCount", mode="before")
    @classmethod
    def clamp_recurrence_count(cls, v):
        return _clamp_count(v)


class ItemUpdate(BaseModel):
    """Schema for editing an appointment or block"""

    startsAt: Optional[datetime] = None
    endsAt: Optional[datetime] = None
    durationMinutes: Optional[int] = None
    patientId: Optional[str] = None
    value: Optional[Decimal] = None
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = None
    allDay: Optional[bool] = None
    strategy: Optional[ResolutionStrategy] = None

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v):
        return _money(v)


class StrategyRequest(BaseModel):
    strategy: Optional[ResolutionStrategy] = None


class IntervalResponse(BaseModel):
    start: datetime
    end: datetime

    @classmethod
    def from_interval(cls, interval: TimeInterval) -> "IntervalResponse":
        return cls(start=interval.start, end=interval.end)


class ConflictReportResponse(BaseModel):
    conflictingAppointmentIds: list[str]
    conflictingBlockIds: list[str]
    totalCount: int

    @classmethod
    def from_report(cls, report: ConflictReport) -> "ConflictReportResponse":
        return cls(
            conflictingAppointmentIds=report.conflicting_appointment_ids,
            conflictingBlockIds=report.conflicting_block_ids,
            totalCount=report.total_count,
        )


class CheckResponse(BaseModel):
    instances: list[IntervalResponse]
    seriesId: Optional[str] = None
    conflicts: ConflictReportResponse
    message: Optional[str] = None


class CommitResponse(BaseModel):
    state: str
    createdIds: list[str]
    cancelledIds: list[str]
    seriesId: Optional[str] = None
    message: str


class MutationResponse(BaseModel):
    affectedIds: list[str]
    cancelledIds: list[str] = Field(default_factory=list)
    message: str


class OccupiedItemResponse(BaseModel):
    id: str
    kind: ItemKind
    start: datetime
    end: datetime
    seriesId: Optional[str] = None
    status: Optional[AppointmentStatus] = None


class WeekResponse(BaseModel):
    weekStart: datetime
    weekEnd: datetime
    items: list[OccupiedItemResponse]
