"""Scheduling service - Business logic for recurring appointments and blocks"""

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ...auth import ApiCredentials
from .conflicts import IntervalConflictDetector
from .errors import CollaboratorError, ConflictPending, ItemNotFoundError
from .models import (
    Appointment,
    AppointmentStatus,
    ConflictReport,
    ItemKind,
    MutationAction,
    MutationScope,
    OccupiedItem,
    RecurrencePattern,
    ResolutionStrategy,
    ScheduleDraft,
    TimeInterval,
)
from .recurrence import RecurrenceExpander
from .repository import ScheduledItem, ScheduleRepository
from .resolution import ConflictResolutionPolicy, ResolutionDecision, ResolutionState
from .series_mutator import ItemPatch, MutationPlan, SeriesScopedMutator
from .time_calculator import week_range

logger = logging.getLogger(__name__)


class ExpansionCheck(BaseModel):
    """Occurrences of a pending creation and the conflicts they would cause"""

    kind: ItemKind
    instances: list[TimeInterval]
    series_id: Optional[str] = None
    conflicts: ConflictReport


class CommitResult(BaseModel):
    state: ResolutionState
    created_ids: list[str] = Field(default_factory=list)
    cancelled_ids: list[str] = Field(default_factory=list)
    series_id: Optional[str] = None


class MutationResult(BaseModel):
    state: ResolutionState = ResolutionState.CLEAN
    affected_ids: list[str] = Field(default_factory=list)
    cancelled_ids: list[str] = Field(default_factory=list)


class WeekView(BaseModel):
    week: TimeInterval
    items: list[OccupiedItem]


def _will_be_active(item: ScheduledItem, patch: ItemPatch) -> bool:
    # Blocks carry no status
    if not isinstance(item, Appointment):
        return True
    if patch.status is not None:
        return patch.status != AppointmentStatus.CANCELLED
    return item.is_active


def intervals_to_check(plan: MutationPlan, patch: ItemPatch) -> list[TimeInterval]:
    """
    Slots an edit would newly occupy, decided per affected item.

    Items that stay cancelled occupy nothing. Active items are checked at
    their new time; reactivated appointments at their old one.
    """
    moved = plan.moved_intervals
    intervals = []
    for item in plan.affected:
        if not _will_be_active(item, patch):
            continue
        if item.id in moved:
            intervals.append(moved[item.id])
        elif isinstance(item, Appointment) and not item.is_active:
            intervals.append(item.interval)
    return intervals


class SchedulingService:
    """
    Runs one scheduling operation end to end:
    validation has already happened, then expand -> detect -> resolve -> mutate.
    Holds no state between operations.
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        expander: Optional[RecurrenceExpander] = None,
    ):
        self.repo = repository
        self.expander = expander or RecurrenceExpander()
        self.detector = IntervalConflictDetector(repository)
        self.mutator = SeriesScopedMutator(repository)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def expand_and_check(
        self,
        credentials: ApiCredentials,
        anchor: TimeInterval,
        pattern: RecurrencePattern,
        practitioner_id: str,
        kind: ItemKind = ItemKind.APPOINTMENT,
    ) -> ExpansionCheck:
        """Expand the recurrence and collect conflicts for every occurrence"""
        expansion = self.expander.expand(anchor, pattern)
        conflicts = await self.detector.find_batch_conflicts(
            credentials, practitioner_id, expansion.instances
        )
        return ExpansionCheck(
            kind=kind,
            instances=expansion.instances,
            series_id=expansion.series_id,
            conflicts=conflicts,
        )

    async def resolve_and_commit(
        self,
        credentials: ApiCredentials,
        draft: ScheduleDraft,
        check: ExpansionCheck,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> CommitResult:
        """
        Apply the user's strategy and write the batch.

        Either every occurrence is created (plus any cancellations) or the
        batch is rolled back and a CollaboratorError is raised.

        Raises:
            ConflictPending: If there are conflicts and no strategy was chosen
            CollaboratorError: If the backend fails; ``incomplete_ids`` lists
                anything that could not be rolled back
        """
        decision = self._decide(check.conflicts, strategy)

        if decision.state == ResolutionState.ABORTED:
            logger.info(
                f"🚫 {draft.kind.value.capitalize()} batch of {len(check.instances)} aborted by user"
            )
            return CommitResult(state=decision.state)

        cancelled = await self._cancel_appointments(credentials, decision.cancel_appointment_ids)

        items = [draft.fields_for(interval, check.series_id) for interval in check.instances]
        try:
            created = await self.repo.create_many(credentials, draft.kind, items)
        except CollaboratorError as e:
            logger.error(
                f"❌ {draft.kind.value.capitalize()} batch failed after "
                f"{len(e.incomplete_ids)} of {len(items)} creation(s), rolling back"
            )
            leftover = await self._rollback(credentials, draft.kind, e.incomplete_ids, cancelled)
            raise CollaboratorError(e.message, status_code=e.status_code, incomplete_ids=leftover) from e

        logger.info(
            f"✅ Created {len(created)} {draft.kind.value}(s), cancelled {len(cancelled)} "
            f"(state={decision.state.value}, series={check.series_id})"
        )
        return CommitResult(
            state=decision.state,
            created_ids=created,
            cancelled_ids=cancelled,
            series_id=check.series_id,
        )

    async def schedule(
        self,
        credentials: ApiCredentials,
        draft: ScheduleDraft,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> CommitResult:
        """Expand, check and commit a validated draft in one call"""
        check = await self.expand_and_check(
            credentials, draft.anchor, draft.pattern, draft.practitioner_id, draft.kind
        )
        return await self.resolve_and_commit(credentials, draft, check, strategy)

    # ------------------------------------------------------------------
    # Series-scoped edits and deletes
    # ------------------------------------------------------------------

    async def edit_series(
        self,
        credentials: ApiCredentials,
        kind: ItemKind,
        target_id: str,
        scope: MutationScope,
        patch: ItemPatch,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> MutationResult:
        """
        Edit one occurrence or this-and-following occurrences.

        Moved items are conflict-checked against everything except the
        items being edited.
        """
        plan = await self.mutator.plan(
            credentials, MutationAction.EDIT, kind, target_id, scope, patch
        )

        decision = ResolutionDecision(state=ResolutionState.CLEAN)
        intervals = intervals_to_check(plan, patch)
        if intervals:
            conflicts = await self.detector.find_batch_conflicts(
                credentials,
                plan.target.practitioner_id,
                intervals,
                exclude_ids=plan.affected_ids,
            )
            decision = self._decide(conflicts, strategy)
            if decision.state == ResolutionState.ABORTED:
                logger.info(f"🚫 Edit of {kind.value} {target_id} aborted by user")
                return MutationResult(state=decision.state)

        cancelled = await self._cancel_appointments(credentials, decision.cancel_appointment_ids)
        try:
            affected = await self.mutator.execute(credentials, plan)
        except CollaboratorError as e:
            leftover = await self._rollback(credentials, kind, [], cancelled)
            raise CollaboratorError(
                e.message, status_code=e.status_code, incomplete_ids=e.incomplete_ids + leftover
            ) from e

        return MutationResult(state=decision.state, affected_ids=affected, cancelled_ids=cancelled)

    async def delete_series(
        self,
        credentials: ApiCredentials,
        kind: ItemKind,
        target_id: str,
        scope: MutationScope,
    ) -> list[str]:
        """Delete one occurrence or this-and-following occurrences"""
        return await self.mutator.apply(
            credentials, MutationAction.DELETE, kind, target_id, scope
        )

    # ------------------------------------------------------------------
    # Single appointment status changes
    # ------------------------------------------------------------------

    async def cancel_appointment(self, credentials: ApiCredentials, appointment_id: str) -> list[str]:
        await self.repo.cancel(credentials, ItemKind.APPOINTMENT, appointment_id)
        logger.info(f"🚫 Appointment {appointment_id} cancelled")
        return [appointment_id]

    async def reactivate_appointment(
        self,
        credentials: ApiCredentials,
        appointment_id: str,
        strategy: Optional[ResolutionStrategy] = None,
    ) -> MutationResult:
        """Bring a cancelled appointment back, re-checking its slot first"""
        return await self.edit_series(
            credentials,
            ItemKind.APPOINTMENT,
            appointment_id,
            MutationScope.SINGLE,
            ItemPatch(status=AppointmentStatus.SCHEDULED),
            strategy,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def week_view(
        self, credentials: ApiCredentials, practitioner_id: str, day: datetime
    ) -> WeekView:
        """Everything occupying a practitioner's Sunday-based week"""
        week = week_range(day)
        items = await self.repo.list_occupied(credentials, practitioner_id, week.start, week.end)
        return WeekView(week=week, items=sorted(items, key=lambda item: item.interval.start))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decide(
        conflicts: ConflictReport, strategy: Optional[ResolutionStrategy]
    ) -> ResolutionDecision:
        decision = ConflictResolutionPolicy(conflicts).choose(strategy)
        if decision.pending:
            logger.warning(f"⏸️ {conflicts.total_count} conflict(s) waiting for a decision")
            raise ConflictPending(conflicts)
        return decision

    async def _cancel_appointments(
        self, credentials: ApiCredentials, appointment_ids: list[str]
    ) -> list[str]:
        cancelled: list[str] = []
        for appointment_id in appointment_ids:
            try:
                await self.repo.cancel(credentials, ItemKind.APPOINTMENT, appointment_id)
            except (CollaboratorError, ItemNotFoundError) as e:
                leftover = await self._rollback(credentials, ItemKind.APPOINTMENT, [], cancelled)
                raise CollaboratorError(
                    e.message,
                    status_code=getattr(e, "status_code", None),
                    incomplete_ids=leftover,
                ) from e
            cancelled.append(appointment_id)
        return cancelled

    async def _rollback(
        self,
        credentials: ApiCredentials,
        kind: ItemKind,
        created_ids: list[str],
        cancelled_ids: list[str],
    ) -> list[str]:
        """Undo a partial batch; returns ids left in an inconsistent state"""
        leftover = []
        for item_id in created_ids:
            try:
                await self.repo.delete(credentials, kind, item_id)
            except (CollaboratorError, ItemNotFoundError) as e:
                logger.error(f"❌ Rollback could not delete {kind.value} {item_id}: {e.message}")
                leftover.append(item_id)

        for appointment_id in cancelled_ids:
            try:
                await self.repo.mutate(
                    credentials,
                    ItemKind.APPOINTMENT,
                    appointment_id,
                    {"status": AppointmentStatus.SCHEDULED},
                )
            except (CollaboratorError, ItemNotFoundError) as e:
                logger.error(f"❌ Rollback could not reactivate appointment {appointment_id}: {e.message}")
                leftover.append(appointment_id)

        if leftover:
            logger.error(f"❌ Batch left incomplete: {leftover}")
        return leftover
