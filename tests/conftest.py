"""Shared test fixtures for scheduling tests."""

import itertools
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest

from clinic_agenda.auth import ApiCredentials
from clinic_agenda.domain.scheduling.errors import CollaboratorError, ItemNotFoundError
from clinic_agenda.domain.scheduling.models import (
    Appointment,
    AppointmentStatus,
    Block,
    ItemKind,
    OccupiedItem,
    TimeInterval,
)
from clinic_agenda.domain.scheduling.repository import to_occupied
from clinic_agenda.domain.scheduling.service import SchedulingService
from clinic_agenda.domain.scheduling.time_calculator import align_interval


def interval(start: datetime, minutes: int = 50) -> TimeInterval:
    return TimeInterval(start=start, end=start + timedelta(minutes=minutes))


class InMemoryScheduleRepository:
    """Backend fake keeping appointments and blocks in dictionaries."""

    def __init__(self):
        self.appointments: dict[str, Appointment] = {}
        self.blocks: dict[str, Block] = {}
        self._ids = itertools.count(1)
        self.fail_create_after: Optional[int] = None
        self.fail_mutate_ids: set[str] = set()
        self.fail_delete_ids: set[str] = set()
        self.fail_cancel_ids: set[str] = set()
        self.created_count = 0
        self.list_calls = 0

    def _store(self, kind: ItemKind) -> dict:
        return self.appointments if kind == ItemKind.APPOINTMENT else self.blocks

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add_appointment(
        self,
        start: datetime,
        minutes: int = 50,
        practitioner_id: str = "P",
        patient_id: str = "patient-1",
        series_id: Optional[str] = None,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        item_id: Optional[str] = None,
    ) -> Appointment:
        appointment = Appointment(
            id=item_id or self._next_id("appt"),
            practitioner_id=practitioner_id,
            patient_id=patient_id,
            interval=interval(start, minutes),
            series_id=series_id,
            status=status,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    def add_block(
        self,
        start: datetime,
        minutes: int = 60,
        practitioner_id: str = "P",
        series_id: Optional[str] = None,
        reason: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> Block:
        block = Block(
            id=item_id or self._next_id("block"),
            practitioner_id=practitioner_id,
            interval=interval(start, minutes),
            series_id=series_id,
            reason=reason,
        )
        self.blocks[block.id] = block
        return block

    async def list_occupied(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[OccupiedItem]:
        self.list_calls += 1
        window = TimeInterval(start=window_start, end=window_end)
        items = list(self.appointments.values()) + list(self.blocks.values())
        occupied = []
        for item in items:
            aligned = align_interval(item.interval, window_start)
            if item.practitioner_id == practitioner_id and aligned.overlaps(window):
                occupied.append(to_occupied(item).model_copy(update={"interval": aligned}))
        return occupied

    async def get_one(self, credentials: ApiCredentials, kind: ItemKind, item_id: str):
        try:
            return self._store(kind)[item_id]
        except KeyError:
            raise ItemNotFoundError(f"{kind.value} {item_id} not found") from None

    async def list_series(self, credentials: ApiCredentials, kind: ItemKind, series_id: str):
        members = [item for item in self._store(kind).values() if item.series_id == series_id]
        return sorted(members, key=lambda item: item.interval.start)

    async def create_one(
        self, credentials: ApiCredentials, kind: ItemKind, fields: dict[str, Any]
    ) -> str:
        if self.fail_create_after is not None and self.created_count >= self.fail_create_after:
            raise CollaboratorError("Could not connect to the scheduling server.")
        self.created_count += 1
        if kind == ItemKind.APPOINTMENT:
            item = Appointment(id=self._next_id("appt"), **fields)
        else:
            item = Block(id=self._next_id("block"), **fields)
        self._store(kind)[item.id] = item
        return item.id

    async def create_many(
        self, credentials: ApiCredentials, kind: ItemKind, items: list[dict[str, Any]]
    ) -> list[str]:
        created: list[str] = []
        for fields in items:
            try:
                created.append(await self.create_one(credentials, kind, fields))
            except CollaboratorError as e:
                raise CollaboratorError(e.message, incomplete_ids=list(created)) from e
        return created

    async def mutate(
        self, credentials: ApiCredentials, kind: ItemKind, item_id: str, patch: dict[str, Any]
    ) -> None:
        if item_id in self.fail_mutate_ids:
            raise CollaboratorError("The scheduling server could not complete the request.")
        item = await self.get_one(credentials, kind, item_id)
        self._store(kind)[item_id] = item.model_copy(update=patch)

    async def cancel(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None:
        if item_id in self.fail_cancel_ids:
            raise CollaboratorError("The scheduling server could not complete the request.")
        if kind == ItemKind.BLOCK:
            await self.delete(credentials, kind, item_id)
            return
        await self.mutate(credentials, kind, item_id, {"status": AppointmentStatus.CANCELLED})

    async def delete(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None:
        if item_id in self.fail_delete_ids:
            raise CollaboratorError("The scheduling server could not complete the request.")
        if item_id not in self._store(kind):
            raise ItemNotFoundError(f"{kind.value} {item_id} not found")
        del self._store(kind)[item_id]


@pytest.fixture
def credentials() -> ApiCredentials:
    return ApiCredentials(token="test-token")


@pytest.fixture
def repo() -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository()


@pytest.fixture
def service(repo) -> SchedulingService:
    return SchedulingService(repo)


@pytest.fixture
def anchor() -> TimeInterval:
    """Monday 2024-03-04 10:00-10:50."""
    return interval(datetime(2024, 3, 4, 10, 0))
