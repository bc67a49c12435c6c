"""Scheduling router - FastAPI endpoints for appointments and blocks"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from ...auth import ApiCredentials, get_api_credentials
from .errors import describe_conflicts
from .models import ItemKind, MutationScope
from .resolution import ResolutionState
from .schemas import (
    CheckResponse,
    CommitResponse,
    ConflictReportResponse,
    IntervalResponse,
    MutationResponse,
    OccupiedItemResponse,
    StrategyRequest,
    WeekResponse,
)
from .service import CommitResult, SchedulingService
from .validation import ValidationGateway, ValidationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])

gateway = ValidationGateway()


class ResourceKind(str, Enum):
    APPOINTMENTS = "appointments"
    BLOCKS = "blocks"

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind.APPOINTMENT if self == ResourceKind.APPOINTMENTS else ItemKind.BLOCK


def get_scheduling_service(request: Request) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(request.app.state.schedule_repository)


def validation_failed(result: ValidationResult) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"message": "Validation error.", "errors": result.errors},
    )


def commit_response(kind: ItemKind, result: CommitResult) -> CommitResponse:
    if result.state == ResolutionState.ABORTED:
        message = "Scheduling cancelled. Nothing was changed."
    elif len(result.created_ids) == 1:
        message = f"{kind.value.capitalize()} created successfully!"
    else:
        message = f"{len(result.created_ids)} {kind.value}s created successfully!"

    return CommitResponse(
        state=result.state.value,
        createdIds=result.created_ids,
        cancelledIds=result.cancelled_ids,
        seriesId=result.series_id,
        message=message,
    )


async def _check(
    result: ValidationResult, credentials: ApiCredentials, service: SchedulingService
):
    draft = result.value
    check = await service.expand_and_check(
        credentials, draft.anchor, draft.pattern, draft.practitioner_id, draft.kind
    )
    return CheckResponse(
        instances=[IntervalResponse.from_interval(i) for i in check.instances],
        seriesId=check.series_id,
        conflicts=ConflictReportResponse.from_report(check.conflicts),
        message=describe_conflicts(check.conflicts) if check.conflicts.has_conflicts else None,
    )


async def _commit(
    result: ValidationResult, credentials: ApiCredentials, service: SchedulingService
):
    draft = result.value
    committed = await service.schedule(credentials, draft, result.strategy)
    status_code = 200 if committed.state == ResolutionState.ABORTED else 201
    return JSONResponse(
        status_code=status_code,
        content=commit_response(draft.kind, committed).model_dump(mode="json"),
    )


# ============================================================================
# CREATION
# ============================================================================


@router.post("/appointments/check", response_model=CheckResponse)
async def check_appointments(
    payload: dict[str, Any] = Body(...),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Expand a (possibly recurring) appointment and report conflicts without writing"""
    result = gateway.validate_appointment(payload)
    if not result.ok:
        return validation_failed(result)
    return await _check(result, credentials, service)


@router.post("/appointments", status_code=201, response_model=CommitResponse)
async def create_appointments(
    payload: dict[str, Any] = Body(...),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Create appointments; send ``strategy`` to resolve reported conflicts"""
    result = gateway.validate_appointment(payload)
    if not result.ok:
        return validation_failed(result)
    return await _commit(result, credentials, service)


@router.post("/blocks/check", response_model=CheckResponse)
async def check_blocks(
    payload: dict[str, Any] = Body(...),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    result = gateway.validate_block(payload)
    if not result.ok:
        return validation_failed(result)
    return await _check(result, credentials, service)


@router.post("/blocks", status_code=201, response_model=CommitResponse)
async def create_blocks(
    payload: dict[str, Any] = Body(...),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Block time on the practitioner's calendar"""
    result = gateway.validate_block(payload)
    if not result.ok:
        return validation_failed(result)
    return await _commit(result, credentials, service)


# ============================================================================
# SINGLE APPOINTMENT STATUS
# ============================================================================


@router.post("/appointments/{item_id}/cancel", response_model=MutationResponse)
async def cancel_appointment(
    item_id: str,
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    affected = await service.cancel_appointment(credentials, item_id)
    return MutationResponse(affectedIds=affected, message="Session cancelled successfully!")


@router.post("/appointments/{item_id}/reactivate", response_model=MutationResponse)
async def reactivate_appointment(
    item_id: str,
    body: Optional[StrategyRequest] = None,
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    strategy = body.strategy if body else None
    result = await service.reactivate_appointment(credentials, item_id, strategy)
    if result.state == ResolutionState.ABORTED:
        message = "Reactivation cancelled. Nothing was changed."
    else:
        message = "Session reactivated successfully!"
    return MutationResponse(
        affectedIds=result.affected_ids, cancelledIds=result.cancelled_ids, message=message
    )


# ============================================================================
# SERIES-SCOPED EDIT / DELETE
# ============================================================================


@router.patch("/{resource}/{item_id}", response_model=MutationResponse)
async def edit_item(
    resource: ResourceKind,
    item_id: str,
    payload: dict[str, Any] = Body(...),
    scope: MutationScope = Query(MutationScope.SINGLE),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Edit one occurrence or this and all following occurrences"""
    result = gateway.validate_update(payload)
    if not result.ok:
        return validation_failed(result)

    mutation = await service.edit_series(
        credentials, resource.item_kind, item_id, scope, result.value, result.strategy
    )
    if mutation.state == ResolutionState.ABORTED:
        message = "Edit cancelled. Nothing was changed."
    else:
        message = f"{len(mutation.affected_ids)} item(s) updated successfully!"
    return MutationResponse(
        affectedIds=mutation.affected_ids, cancelledIds=mutation.cancelled_ids, message=message
    )


@router.delete("/{resource}/{item_id}", response_model=MutationResponse)
async def delete_item(
    resource: ResourceKind,
    item_id: str,
    scope: MutationScope = Query(MutationScope.SINGLE),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Delete one occurrence or this and all following occurrences"""
    affected = await service.delete_series(credentials, resource.item_kind, item_id, scope)
    return MutationResponse(
        affectedIds=affected, message=f"{len(affected)} item(s) deleted successfully!"
    )


# ============================================================================
# WEEK VIEW
# ============================================================================


@router.get("/week", response_model=WeekResponse)
async def get_week(
    practitionerId: str = Query(..., min_length=1),
    date: datetime = Query(...),
    credentials: ApiCredentials = Depends(get_api_credentials),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Appointments and blocks in the Sunday-based week containing ``date``"""
    view = await service.week_view(credentials, practitionerId, date)
    return WeekResponse(
        weekStart=view.week.start,
        weekEnd=view.week.end,
        items=[
            OccupiedItemResponse(
                id=item.id,
                kind=item.kind,
                start=item.interval.start,
                end=item.interval.end,
                seriesId=item.series_id,
                status=item.status,
            )
            for item in view.items
        ],
    )
