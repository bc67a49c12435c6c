"""
Scheduling repository - access to the clinic REST backend.

The backend owns persistence and performs its own authoritative checks.
The scheduling core only needs to list what occupies a practitioner's
calendar, read items and series, and create / update / cancel / delete.

Field dictionaries passed to ``create_one`` and ``mutate`` use the domain
names: ``practitioner_id``, ``patient_id``, ``interval`` (TimeInterval),
``series_id``, ``status`` (AppointmentStatus), ``value`` (Decimal) for
appointments and ``practitioner_id``, ``interval``, ``reason``,
``series_id``, ``all_day`` for blocks.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, Union

import httpx

from ...auth import ApiCredentials
from ...config import CLINIC_API_TIMEOUT, CLINIC_API_URL, DEFAULT_SESSION_MINUTES
from .errors import CollaboratorError, ItemNotFoundError
from .models import (
    Appointment,
    AppointmentStatus,
    Block,
    ItemKind,
    OccupiedItem,
    TimeInterval,
)
from .time_calculator import add_minutes, align_interval

logger = logging.getLogger(__name__)

ScheduledItem = Union[Appointment, Block]

RESOURCE_PATHS = {
    ItemKind.APPOINTMENT: "/api/agendamentos",
    ItemKind.BLOCK: "/api/bloqueios",
}

STATUS_TO_WIRE = {
    AppointmentStatus.SCHEDULED: "agendado",
    AppointmentStatus.CANCELLED: "cancelado",
    AppointmentStatus.COMPLETED: "realizado",
}
STATUS_FROM_WIRE = {wire: status for status, wire in STATUS_TO_WIRE.items()}

WIRE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

CONNECTION_ERROR_MESSAGE = "Could not connect to the scheduling server."
SERVER_ERROR_MESSAGE = "The scheduling server could not complete the request."


class ScheduleRepository(Protocol):
    """Operations the scheduling core consumes from its persistence backend"""

    async def list_occupied(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[OccupiedItem]: ...

    async def get_one(
        self, credentials: ApiCredentials, kind: ItemKind, item_id: str
    ) -> ScheduledItem: ...

    async def list_series(
        self, credentials: ApiCredentials, kind: ItemKind, series_id: str
    ) -> list[ScheduledItem]: ...

    async def create_one(
        self, credentials: ApiCredentials, kind: ItemKind, fields: dict[str, Any]
    ) -> str: ...

    async def create_many(
        self, credentials: ApiCredentials, kind: ItemKind, items: list[dict[str, Any]]
    ) -> list[str]: ...

    async def mutate(
        self, credentials: ApiCredentials, kind: ItemKind, item_id: str, patch: dict[str, Any]
    ) -> None: ...

    async def cancel(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None: ...

    async def delete(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None: ...


# ============================================================================
# WIRE FORMAT
# ============================================================================


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is not None:
        # Keep the offset so the backend does not read it as local time
        return moment.isoformat(sep=" ", timespec="seconds")
    return moment.strftime(WIRE_TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime:
    return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))


def _duration_minutes(interval: TimeInterval) -> int:
    return math.ceil(interval.duration.total_seconds() / 60)


def appointment_to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if "practitioner_id" in fields:
        payload["psicologo_id"] = fields["practitioner_id"]
    if "patient_id" in fields:
        payload["paciente_id"] = fields["patient_id"]
    if "interval" in fields:
        interval: TimeInterval = fields["interval"]
        payload["data_hora_sessao"] = format_timestamp(interval.start)
        payload["duracao"] = _duration_minutes(interval)
    if "value" in fields:
        payload["valor_consulta"] = float(fields["value"])
    if "status" in fields:
        payload["status"] = STATUS_TO_WIRE[AppointmentStatus(fields["status"])]
    if "series_id" in fields:
        payload["serie_id"] = fields["series_id"]
    return payload


def block_to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if "practitioner_id" in fields:
        payload["psicologo_id"] = fields["practitioner_id"]
    if "interval" in fields:
        interval: TimeInterval = fields["interval"]
        payload["data_inicio"] = format_timestamp(interval.start)
        payload["data_fim"] = format_timestamp(interval.end)
    if "reason" in fields:
        payload["motivo"] = fields["reason"]
    if "all_day" in fields:
        payload["dia_inteiro"] = bool(fields["all_day"])
    if "series_id" in fields:
        payload["serie_id"] = fields["series_id"]
    return payload


def appointment_from_wire(data: dict[str, Any]) -> Appointment:
    start = parse_timestamp(data["data_hora_sessao"])
    duration = data.get("duracao") or DEFAULT_SESSION_MINUTES
    status = STATUS_FROM_WIRE.get(data.get("status") or "agendado", AppointmentStatus.SCHEDULED)
    value = data.get("valor_consulta")
    return Appointment(
        id=str(data["id"]),
        practitioner_id=str(data.get("psicologo_id") or ""),
        patient_id=str(data.get("paciente_id") or ""),
        interval=TimeInterval(start=start, end=add_minutes(start, int(duration))),
        series_id=data.get("serie_id"),
        status=status,
        value=Decimal(str(value)) if value is not None else Decimal("0"),
    )


def block_from_wire(data: dict[str, Any]) -> Block:
    return Block(
        id=str(data["id"]),
        practitioner_id=str(data.get("psicologo_id") or ""),
        interval=TimeInterval(
            start=parse_timestamp(data["data_inicio"]),
            end=parse_timestamp(data["data_fim"]),
        ),
        reason=data.get("motivo"),
        series_id=data.get("serie_id"),
        all_day=bool(data.get("dia_inteiro", False)),
    )


def to_occupied(item: ScheduledItem) -> OccupiedItem:
    if isinstance(item, Appointment):
        return OccupiedItem(
            id=item.id,
            kind=ItemKind.APPOINTMENT,
            interval=item.interval,
            series_id=item.series_id,
            status=item.status,
        )
    return OccupiedItem(
        id=item.id, kind=ItemKind.BLOCK, interval=item.interval, series_id=item.series_id
    )


TO_WIRE = {ItemKind.APPOINTMENT: appointment_to_wire, ItemKind.BLOCK: block_to_wire}
FROM_WIRE = {ItemKind.APPOINTMENT: appointment_from_wire, ItemKind.BLOCK: block_from_wire}


def _backend_message(response: httpx.Response) -> Optional[str]:
    """The backend reports failures as {"erro": "..."}"""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("erro") or body.get("error") or body.get("message")
    return None


# ============================================================================
# REST IMPLEMENTATION
# ============================================================================


class ApiScheduleRepository:
    """Repository backed by the clinic REST API"""

    def __init__(
        self,
        base_url: str = CLINIC_API_URL,
        timeout: float = CLINIC_API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _request(
        self,
        credentials: ApiCredentials,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        async with self._client() as client:
            try:
                response = await client.request(
                    method, path, params=params, json=json, headers=credentials.headers
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 404:
                    raise ItemNotFoundError(f"Not found: {path}") from e
                message = _backend_message(e.response) or SERVER_ERROR_MESSAGE
                logger.error(f"❌ Clinic API {method} {path} failed: {status_code} - {message}")
                raise CollaboratorError(message, status_code=status_code) from e
            except httpx.RequestError as e:
                logger.error(f"❌ Clinic API {method} {path} unreachable: {e}")
                raise CollaboratorError(CONNECTION_ERROR_MESSAGE) from e

        if not response.content:
            return None
        return response.json()

    async def list_occupied(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[OccupiedItem]:
        """List appointments and blocks of a practitioner touching a window"""
        params = {
            "psicologo_id": practitioner_id,
            "data_inicio": format_timestamp(window_start),
            "data_fim": format_timestamp(window_end),
        }
        window = TimeInterval(start=window_start, end=window_end)

        occupied = []
        for kind in (ItemKind.APPOINTMENT, ItemKind.BLOCK):
            rows = await self._request(credentials, "GET", RESOURCE_PATHS[kind], params=params)
            for row in rows or []:
                item = FROM_WIRE[kind](row)
                # The backend may ignore filters it does not support
                if item.practitioner_id and item.practitioner_id != practitioner_id:
                    continue
                # Rows may carry a UTC offset while the query window is naive, or vice versa
                interval = align_interval(item.interval, window_start)
                if not interval.overlaps(window):
                    continue
                occupied.append(to_occupied(item).model_copy(update={"interval": interval}))

        logger.debug(
            f"📅 {len(occupied)} occupied item(s) for practitioner {practitioner_id} "
            f"between {window_start.isoformat()} and {window_end.isoformat()}"
        )
        return occupied

    async def get_one(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> ScheduledItem:
        data = await self._request(credentials, "GET", f"{RESOURCE_PATHS[kind]}/{item_id}")
        if not data:
            raise ItemNotFoundError(f"{kind.value.capitalize()} {item_id} not found")
        return FROM_WIRE[kind](data)

    async def list_series(
        self, credentials: ApiCredentials, kind: ItemKind, series_id: str
    ) -> list[ScheduledItem]:
        rows = await self._request(
            credentials, "GET", RESOURCE_PATHS[kind], params={"serie_id": series_id}
        )
        items = [FROM_WIRE[kind](row) for row in rows or []]
        return sorted(
            (item for item in items if item.series_id == series_id),
            key=lambda item: item.interval.start,
        )

    async def create_one(
        self, credentials: ApiCredentials, kind: ItemKind, fields: dict[str, Any]
    ) -> str:
        data = await self._request(
            credentials, "POST", RESOURCE_PATHS[kind], json=TO_WIRE[kind](fields)
        )
        if not data or "id" not in data:
            raise CollaboratorError(SERVER_ERROR_MESSAGE)
        return str(data["id"])

    async def create_many(
        self, credentials: ApiCredentials, kind: ItemKind, items: list[dict[str, Any]]
    ) -> list[str]:
        """
        Create items one by one.

        Raises:
            CollaboratorError: On the first failure, with the ids already
                created in ``incomplete_ids`` so the caller can roll back
        """
        created_ids: list[str] = []
        for fields in items:
            try:
                created_ids.append(await self.create_one(credentials, kind, fields))
            except (CollaboratorError, ItemNotFoundError) as e:
                raise CollaboratorError(
                    e.message,
                    status_code=getattr(e, "status_code", None),
                    incomplete_ids=list(created_ids),
                ) from e
        return created_ids

    async def mutate(
        self, credentials: ApiCredentials, kind: ItemKind, item_id: str, patch: dict[str, Any]
    ) -> None:
        await self._request(
            credentials, "PUT", f"{RESOURCE_PATHS[kind]}/{item_id}", json=TO_WIRE[kind](patch)
        )

    async def cancel(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None:
        if kind == ItemKind.BLOCK:
            # Blocks have no status; cancelling one frees the time
            await self.delete(credentials, kind, item_id)
            return
        await self.mutate(credentials, kind, item_id, {"status": AppointmentStatus.CANCELLED})

    async def delete(self, credentials: ApiCredentials, kind: ItemKind, item_id: str) -> None:
        await self._request(credentials, "DELETE", f"{RESOURCE_PATHS[kind]}/{item_id}")
