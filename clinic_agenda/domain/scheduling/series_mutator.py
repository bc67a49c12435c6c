"""
Series-scoped edits and deletes.

A mutation targets either a single occurrence or "this and all following"
occurrences of a series. Series members are partitioned by series id and
start time: members starting before the target are never touched.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from ...auth import ApiCredentials
from .errors import (
    CollaboratorError,
    InvalidIntervalError,
    ItemNotFoundError,
    NotRecurringError,
)
from .models import (
    AppointmentStatus,
    ItemKind,
    MutationAction,
    MutationScope,
    TimeInterval,
)
from .repository import ScheduledItem, ScheduleRepository
from .time_calculator import align_interval, align_timezone, ensure_valid_interval

logger = logging.getLogger(__name__)

APPOINTMENT_FIELDS = ("patient_id", "value", "status")
BLOCK_FIELDS = ("reason", "all_day")


class ItemPatch(BaseModel):
    """Changes requested for an item; ``interval`` is the target's new time"""

    interval: Optional[TimeInterval] = None
    # Start-only move: the end shifts by the same amount
    start: Optional[datetime] = None
    patient_id: Optional[str] = None
    value: Optional[Decimal] = None
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = None
    all_day: Optional[bool] = None

    def static_fields(self, kind: ItemKind) -> dict[str, Any]:
        """Non-time fields, copied verbatim onto every affected item"""
        names = APPOINTMENT_FIELDS if kind == ItemKind.APPOINTMENT else BLOCK_FIELDS
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


class PlannedUpdate(BaseModel):
    item_id: str
    fields: dict[str, Any]
    original: dict[str, Any] = Field(default_factory=dict)


class MutationPlan(BaseModel):
    action: MutationAction
    kind: ItemKind
    scope: MutationScope
    target: ScheduledItem
    affected: list[ScheduledItem]
    updates: list[PlannedUpdate] = Field(default_factory=list)

    @property
    def affected_ids(self) -> list[str]:
        return [item.id for item in self.affected]

    @property
    def moved_intervals(self) -> dict[str, TimeInterval]:
        """New interval of every item whose time changes, by id"""
        return {u.item_id: u.fields["interval"] for u in self.updates if "interval" in u.fields}


def select_affected(
    target: ScheduledItem, members: list[ScheduledItem], scope: MutationScope
) -> list[ScheduledItem]:
    """
    Items a mutation applies to, in chronological order.

    Raises:
        NotRecurringError: If ``scope`` is ALL_FUTURE and the target has no series
    """
    if scope == MutationScope.SINGLE:
        return [target]

    if not target.series_id:
        raise NotRecurringError(
            f"Item {target.id} is not part of a recurring series; "
            "'this and following' is not available"
        )

    affected = {target.id: target}
    for member in members:
        if member.series_id != target.series_id:
            continue
        if align_timezone(member.interval.start, target.interval.start) >= target.interval.start:
            affected.setdefault(member.id, member)

    return sorted(affected.values(), key=lambda item: item.interval.start)


def plan_updates(
    kind: ItemKind, target: ScheduledItem, affected: list[ScheduledItem], patch: ItemPatch
) -> list[PlannedUpdate]:
    """
    Per-item field changes for an edit.

    A new time for the target is applied to the other items as a shift by
    the same start and end deltas, keeping the series spacing.
    """
    static = patch.static_fields(kind)

    moved = patch.interval is not None or patch.start is not None
    start_delta = end_delta = timedelta(0)
    anchor = target.interval.start
    if patch.interval is not None:
        new_interval = ensure_valid_interval(align_interval(patch.interval, anchor))
        start_delta = new_interval.start - target.interval.start
        end_delta = new_interval.end - target.interval.end
    elif patch.start is not None:
        start_delta = end_delta = align_timezone(patch.start, anchor) - target.interval.start

    updates = []
    for item in affected:
        fields = dict(static)
        if moved:
            try:
                shifted = item.interval.shifted(start_delta, end_delta)
            except OverflowError:
                raise InvalidIntervalError(
                    f"Moving {kind.value} {item.id} falls outside the supported date range"
                ) from None
            fields["interval"] = ensure_valid_interval(shifted)
        if not fields:
            continue
        original = {name: getattr(item, name) for name in fields}
        updates.append(PlannedUpdate(item_id=item.id, fields=fields, original=original))
    return updates


class SeriesScopedMutator:
    """Applies edits and deletes to one occurrence or to the rest of a series"""

    def __init__(self, repository: ScheduleRepository):
        self.repository = repository

    async def plan(
        self,
        credentials: ApiCredentials,
        action: MutationAction,
        kind: ItemKind,
        target_id: str,
        scope: MutationScope,
        patch: Optional[ItemPatch] = None,
    ) -> MutationPlan:
        """Resolve the affected items without writing anything"""
        target = await self.repository.get_one(credentials, kind, target_id)

        members: list[ScheduledItem] = []
        if scope == MutationScope.ALL_FUTURE and target.series_id:
            members = await self.repository.list_series(credentials, kind, target.series_id)

        affected = select_affected(target, members, scope)

        updates = []
        if action == MutationAction.EDIT:
            updates = plan_updates(kind, target, affected, patch or ItemPatch())

        return MutationPlan(
            action=action,
            kind=kind,
            scope=scope,
            target=target,
            affected=affected,
            updates=updates,
        )

    async def execute(self, credentials: ApiCredentials, plan: MutationPlan) -> list[str]:
        if plan.action == MutationAction.DELETE:
            return await self._delete(credentials, plan)
        return await self._edit(credentials, plan)

    async def apply(
        self,
        credentials: ApiCredentials,
        action: MutationAction,
        kind: ItemKind,
        target_id: str,
        scope: MutationScope,
        patch: Optional[ItemPatch] = None,
    ) -> list[str]:
        """Plan and execute a mutation; returns the affected ids"""
        plan = await self.plan(credentials, action, kind, target_id, scope, patch)
        return await self.execute(credentials, plan)

    async def _edit(self, credentials: ApiCredentials, plan: MutationPlan) -> list[str]:
        applied: list[PlannedUpdate] = []
        for update in plan.updates:
            try:
                await self.repository.mutate(credentials, plan.kind, update.item_id, update.fields)
            except (CollaboratorError, ItemNotFoundError) as e:
                logger.error(
                    f"❌ Edit of {plan.kind.value} {update.item_id} failed after "
                    f"{len(applied)} of {len(plan.updates)} update(s)"
                )
                incomplete = await self._restore(credentials, plan.kind, applied)
                raise CollaboratorError(
                    e.message,
                    status_code=getattr(e, "status_code", None),
                    incomplete_ids=incomplete,
                ) from e
            applied.append(update)

        logger.info(
            f"✏️ Edited {len(applied)} {plan.kind.value}(s) (scope={plan.scope.value}, "
            f"target={plan.target.id})"
        )
        return plan.affected_ids

    async def _restore(
        self, credentials: ApiCredentials, kind: ItemKind, applied: list[PlannedUpdate]
    ) -> list[str]:
        """Put back the original values; returns ids that could not be restored"""
        failed = []
        for update in reversed(applied):
            try:
                await self.repository.mutate(credentials, kind, update.item_id, update.original)
            except (CollaboratorError, ItemNotFoundError) as e:
                logger.error(f"❌ Could not restore {kind.value} {update.item_id}: {e.message}")
                failed.append(update.item_id)
        return failed

    async def _delete(self, credentials: ApiCredentials, plan: MutationPlan) -> list[str]:
        deleted: list[str] = []
        for item in plan.affected:
            try:
                await self.repository.delete(credentials, plan.kind, item.id)
            except (CollaboratorError, ItemNotFoundError) as e:
                logger.error(
                    f"❌ Delete of {plan.kind.value} {item.id} failed after "
                    f"{len(deleted)} of {len(plan.affected)} deletion(s)"
                )
                # Deleted items cannot be restored with their ids
                raise CollaboratorError(
                    e.message,
                    status_code=getattr(e, "status_code", None),
                    incomplete_ids=deleted,
                ) from e
            deleted.append(item.id)

        logger.info(
            f"🗑️ Deleted {len(deleted)} {plan.kind.value}(s) (scope={plan.scope.value}, "
            f"target={plan.target.id})"
        )
        return deleted
