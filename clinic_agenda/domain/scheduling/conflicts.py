"""Conflict detection against a practitioner's existing appointments and blocks"""

import logging
from typing import Collection, Iterable, Optional

from ...auth import ApiCredentials
from .models import ConflictReport, OccupiedItem, TimeInterval
from .repository import ScheduleRepository
from .time_calculator import align_interval, covering_window, ensure_valid_interval

logger = logging.getLogger(__name__)


def filter_conflicts(
    items: Iterable[OccupiedItem],
    interval: TimeInterval,
    excluded_ids: Collection[str] = (),
) -> list[OccupiedItem]:
    """Active items overlapping ``interval``, minus the excluded ids"""
    return [
        item
        for item in items
        if item.id not in excluded_ids and item.is_active and item.interval.overlaps(interval)
    ]


class IntervalConflictDetector:
    """Finds existing items that overlap candidate intervals"""

    def __init__(self, repository: ScheduleRepository):
        self.repository = repository

    async def find_conflicts(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        interval: TimeInterval,
        exclude_id: Optional[str] = None,
    ) -> ConflictReport:
        """
        Conflict report for one interval.

        ``exclude_id`` skips the item being edited so it never conflicts
        with itself.
        """
        excluded = {exclude_id} if exclude_id else set()
        return await self._check(credentials, practitioner_id, interval, excluded)

    async def find_batch_conflicts(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        intervals: list[TimeInterval],
        exclude_ids: Collection[str] = (),
    ) -> ConflictReport:
        """Check every interval of a batch and merge the reports into one"""
        excluded = set(exclude_ids)
        reports = []
        for interval in intervals:
            reports.append(await self._check(credentials, practitioner_id, interval, excluded))

        merged = ConflictReport.merge_all(reports)
        if merged.has_conflicts:
            logger.warning(
                f"⚠️ {merged.total_count} conflict(s) across {len(intervals)} occurrence(s) "
                f"for practitioner {practitioner_id}"
            )
        return merged

    async def _check(
        self,
        credentials: ApiCredentials,
        practitioner_id: str,
        interval: TimeInterval,
        excluded: Collection[str],
    ) -> ConflictReport:
        ensure_valid_interval(interval)
        window = covering_window(interval)
        occupied = await self.repository.list_occupied(
            credentials, practitioner_id, window.start, window.end
        )
        occupied = [
            item.model_copy(update={"interval": align_interval(item.interval, interval.start)})
            for item in occupied
        ]
        return ConflictReport.from_items(filter_conflicts(occupied, interval, excluded))
