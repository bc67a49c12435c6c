"""
Validation gateway.

Raw form / JSON payloads are validated here once and turned into typed
drafts. Failures are returned as a field-keyed error map, never raised.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ...config import DEFAULT_SESSION_MINUTES, MIN_SESSION_MINUTES
from .models import (
    AppointmentDraft,
    BlockDraft,
    RecurrencePattern,
    RecurrenceType,
    ResolutionStrategy,
    TimeInterval,
)
from .schemas import AppointmentCreate, BlockCreate, ItemUpdate
from .series_mutator import ItemPatch
from .time_calculator import add_days, add_minutes, widen_to_full_days

logger = logging.getLogger(__name__)

FIELD_REQUIRED = "This field is required."
END_BEFORE_START = "End time must be after start time."
MIXED_TIMEZONES = "Start and end must both include a timezone or both omit it."
OUT_OF_RANGE = "Date falls outside the supported range."

ErrorMap = dict[str, list[str]]


class ValidationResult(BaseModel):
    value: Optional[Union[AppointmentDraft, BlockDraft, ItemPatch]] = None
    strategy: Optional[ResolutionStrategy] = None
    errors: ErrorMap = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def flatten_errors(exc: PydanticValidationError) -> ErrorMap:
    """Group pydantic errors by top-level field name"""
    errors: ErrorMap = {}
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        field = str(loc[0])
        if error.get("type") == "missing":
            message = FIELD_REQUIRED
        else:
            message = error.get("msg", "Invalid value").removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)
    return errors


class ValidationGateway:
    """Validates scheduling payloads before any other component runs"""

    def __init__(
        self,
        default_minutes: int = DEFAULT_SESSION_MINUTES,
        min_minutes: int = MIN_SESSION_MINUTES,
    ):
        self.default_minutes = default_minutes
        self.min_minutes = min_minutes

    def validate_appointment(self, raw: dict[str, Any]) -> ValidationResult:
        try:
            data = AppointmentCreate.model_validate(raw)
        except PydanticValidationError as e:
            return self._failed("appointment", flatten_errors(e))

        errors: ErrorMap = {}
        anchor = self._interval(data.startsAt, data.endsAt, data.durationMinutes, errors)
        pattern = self._pattern(data.recurrence, data.recurrenceCount)
        if anchor is not None:
            self._check_series_range(anchor, pattern, errors)
        if errors:
            return self._failed("appointment", errors)

        draft = AppointmentDraft(
            practitioner_id=data.practitionerId,
            patient_id=data.patientId,
            anchor=anchor,
            pattern=pattern,
            value=data.value,
        )
        return ValidationResult(value=draft, strategy=data.strategy)

    def validate_block(self, raw: dict[str, Any]) -> ValidationResult:
        try:
            data = BlockCreate.model_validate(raw)
        except PydanticValidationError as e:
            return self._failed("block", flatten_errors(e))

        errors: ErrorMap = {}
        anchor = self._interval(
            data.startsAt, data.endsAt, data.durationMinutes, errors, all_day=data.allDay
        )
        pattern = self._pattern(data.recurrence, data.recurrenceCount)
        if anchor is not None:
            self._check_series_range(anchor, pattern, errors)
        if errors:
            return self._failed("block", errors)

        draft = BlockDraft(
            practitioner_id=data.practitionerId,
            anchor=anchor,
            pattern=pattern,
            reason=data.reason,
            all_day=data.allDay,
        )
        return ValidationResult(value=draft, strategy=data.strategy)

    def validate_update(self, raw: dict[str, Any]) -> ValidationResult:
        try:
            data = ItemUpdate.model_validate(raw)
        except PydanticValidationError as e:
            return self._failed("update", flatten_errors(e))

        errors: ErrorMap = {}
        interval = None
        start = None
        if data.startsAt is not None:
            if data.endsAt is None and data.durationMinutes is None and not data.allDay:
                start = data.startsAt
            else:
                interval = self._interval(
                    data.startsAt,
                    data.endsAt,
                    data.durationMinutes,
                    errors,
                    all_day=bool(data.allDay),
                )
        elif data.endsAt is not None or data.durationMinutes is not None:
            errors["startsAt"] = [FIELD_REQUIRED]

        if errors:
            return self._failed("update", errors)

        patch = ItemPatch(
            interval=interval,
            start=start,
            patient_id=data.patientId,
            value=data.value,
            status=data.status,
            reason=data.reason,
            all_day=data.allDay,
        )
        return ValidationResult(value=patch, strategy=data.strategy)

    def _interval(
        self,
        starts_at: datetime,
        ends_at: Optional[datetime],
        duration_minutes: Optional[int],
        errors: ErrorMap,
        all_day: bool = False,
    ) -> Optional[TimeInterval]:
        if ends_at is not None:
            end = ends_at
        elif duration_minutes is not None:
            if duration_minutes < self.min_minutes:
                errors["durationMinutes"] = [
                    f"Duration must be at least {self.min_minutes} minutes."
                ]
                return None
            try:
                end = add_minutes(starts_at, duration_minutes)
            except OverflowError:
                errors["durationMinutes"] = [OUT_OF_RANGE]
                return None
        elif all_day:
            end = starts_at
        else:
            try:
                end = add_minutes(starts_at, self.default_minutes)
            except OverflowError:
                errors["startsAt"] = [OUT_OF_RANGE]
                return None

        if (starts_at.tzinfo is None) != (end.tzinfo is None):
            errors["endsAt"] = [MIXED_TIMEZONES]
            return None

        interval = TimeInterval(start=starts_at, end=end)
        if all_day:
            try:
                interval = widen_to_full_days(interval)
            except OverflowError:
                errors["startsAt"] = [OUT_OF_RANGE]
                return None

        if not interval.is_valid:
            errors["endsAt"] = [END_BEFORE_START]
            return None
        return interval

    @staticmethod
    def _check_series_range(
        anchor: TimeInterval, pattern: RecurrencePattern, errors: ErrorMap
    ) -> None:
        """The last occurrence and the day after it must be representable"""
        try:
            last = anchor.shifted(pattern.step * (pattern.occurrences - 1))
            # Conflict checks query through the end of the last occurrence's day
            add_days(last.end, 1)
        except OverflowError:
            field = "recurrenceCount" if pattern.occurrences > 1 else "startsAt"
            errors[field] = [OUT_OF_RANGE]

    @staticmethod
    def _pattern(recurrence: RecurrenceType, count: int) -> RecurrencePattern:
        if recurrence == RecurrenceType.NONE:
            return RecurrencePattern(type=recurrence, count=1)
        return RecurrencePattern(type=recurrence, count=count)

    @staticmethod
    def _failed(subject: str, errors: ErrorMap) -> ValidationResult:
        logger.info(f"📝 {subject.capitalize()} payload rejected: {sorted(errors)}")
        return ValidationResult(errors=errors)
