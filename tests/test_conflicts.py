"""Tests for interval conflict detection."""

from datetime import datetime, timezone

import pytest

from clinic_agenda.domain.scheduling.conflicts import IntervalConflictDetector, filter_conflicts
from clinic_agenda.domain.scheduling.errors import InvalidIntervalError
from clinic_agenda.domain.scheduling.models import (
    AppointmentStatus,
    ConflictReport,
    ItemKind,
    OccupiedItem,
    RecurrencePattern,
    RecurrenceType,
    TimeInterval,
)
from clinic_agenda.domain.scheduling.recurrence import RecurrenceExpander
from conftest import interval


@pytest.fixture
def detector(repo):
    return IntervalConflictDetector(repo)


class TestFilterConflicts:
    """Tests for the pure overlap filter."""

    def test_cancelled_items_are_ignored(self):
        items = [
            OccupiedItem(
                id="a1",
                kind=ItemKind.APPOINTMENT,
                interval=interval(datetime(2024, 3, 4, 10, 0)),
                status=AppointmentStatus.CANCELLED,
            ),
            OccupiedItem(
                id="a2",
                kind=ItemKind.APPOINTMENT,
                interval=interval(datetime(2024, 3, 4, 10, 30)),
                status=AppointmentStatus.COMPLETED,
            ),
        ]

        result = filter_conflicts(items, interval(datetime(2024, 3, 4, 10, 0)))

        assert [item.id for item in result] == ["a2"]

    def test_blocks_are_always_active(self):
        items = [
            OccupiedItem(id="b1", kind=ItemKind.BLOCK, interval=interval(datetime(2024, 3, 4, 9, 0), 120))
        ]

        assert filter_conflicts(items, interval(datetime(2024, 3, 4, 10, 0)))

    def test_excluded_ids_are_skipped(self):
        items = [
            OccupiedItem(id="a1", kind=ItemKind.APPOINTMENT, interval=interval(datetime(2024, 3, 4, 10, 0)))
        ]

        assert filter_conflicts(items, interval(datetime(2024, 3, 4, 10, 0)), {"a1"}) == []


class TestFindConflicts:
    """Tests for single-interval detection against the repository."""

    @pytest.mark.asyncio
    async def test_overlapping_appointment(self, detector, repo, credentials):
        existing = repo.add_appointment(datetime(2024, 3, 4, 10, 30))

        report = await detector.find_conflicts(credentials, "P", interval(datetime(2024, 3, 4, 10, 0)))

        assert report.conflicting_appointment_ids == [existing.id]
        assert report.conflicting_block_ids == []
        assert report.total_count == 1

    @pytest.mark.asyncio
    async def test_touching_interval_is_not_a_conflict(self, detector, repo, credentials):
        repo.add_appointment(datetime(2024, 3, 4, 10, 50))

        report = await detector.find_conflicts(credentials, "P", interval(datetime(2024, 3, 4, 10, 0)))

        assert not report.has_conflicts

    @pytest.mark.asyncio
    async def test_other_practitioner_is_ignored(self, detector, repo, credentials):
        repo.add_appointment(datetime(2024, 3, 4, 10, 0), practitioner_id="Q")

        report = await detector.find_conflicts(credentials, "P", interval(datetime(2024, 3, 4, 10, 0)))

        assert report.total_count == 0

    @pytest.mark.asyncio
    async def test_item_being_edited_never_conflicts_with_itself(self, detector, repo, credentials):
        existing = repo.add_appointment(datetime(2024, 3, 4, 10, 0))

        report = await detector.find_conflicts(
            credentials, "P", interval(datetime(2024, 3, 4, 10, 20)), exclude_id=existing.id
        )

        assert report.total_count == 0

    @pytest.mark.asyncio
    async def test_block_spanning_midnight_is_found(self, detector, repo, credentials):
        """Items starting the day before still appear in the query window."""
        block = repo.add_block(datetime(2024, 3, 3, 22, 0), minutes=14 * 60)

        report = await detector.find_conflicts(credentials, "P", interval(datetime(2024, 3, 4, 10, 0)))

        assert report.conflicting_block_ids == [block.id]

    @pytest.mark.asyncio
    async def test_aware_items_against_naive_candidate(self, detector, repo, credentials):
        """Items stored with a UTC offset are compared in local wall-clock time."""
        moment = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
        block = repo.add_block(moment)
        local = moment.astimezone().replace(tzinfo=None)

        report = await detector.find_conflicts(credentials, "P", interval(local))

        assert report.conflicting_block_ids == [block.id]

    @pytest.mark.asyncio
    async def test_invalid_interval_raises(self, detector, credentials):
        moment = datetime(2024, 3, 4, 10, 0)
        with pytest.raises(InvalidIntervalError):
            await detector.find_conflicts(credentials, "P", TimeInterval(start=moment, end=moment))


class TestFindBatchConflicts:
    """Tests for checking every occurrence of a series."""

    @pytest.mark.asyncio
    async def test_series_against_a_single_block(self, detector, repo, credentials, anchor):
        """A block on the third Monday conflicts with exactly one occurrence."""
        block = repo.add_block(datetime(2024, 3, 18, 10, 0))
        instances = RecurrenceExpander().expand(
            anchor, RecurrencePattern(type=RecurrenceType.WEEKLY, count=4)
        ).instances

        report = await detector.find_batch_conflicts(credentials, "P", instances)

        assert report.conflicting_appointment_ids == []
        assert report.conflicting_block_ids == [block.id]
        assert report.total_count == 1
        assert repo.list_calls == 4

    @pytest.mark.asyncio
    async def test_reports_are_merged_without_deduplication(self, detector, repo, credentials):
        """A long block overlapping two candidates is reported twice."""
        block = repo.add_block(datetime(2024, 3, 4, 8, 0), minutes=8 * 60)
        intervals = [interval(datetime(2024, 3, 4, 9, 0)), interval(datetime(2024, 3, 4, 13, 0))]

        report = await detector.find_batch_conflicts(credentials, "P", intervals)

        assert report.conflicting_block_ids == [block.id, block.id]
        assert report.total_count == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, detector, credentials):
        report = await detector.find_batch_conflicts(credentials, "P", [])

        assert report == ConflictReport()


class TestConflictReport:
    """Tests for ConflictReport merging."""

    def test_merge_concatenates_and_sums(self):
        a = ConflictReport(conflicting_appointment_ids=["a1"], total_count=1)
        b = ConflictReport(conflicting_appointment_ids=["a2"], conflicting_block_ids=["b1"], total_count=2)

        merged = a.merge(b)

        assert merged.conflicting_appointment_ids == ["a1", "a2"]
        assert merged.conflicting_block_ids == ["b1"]
        assert merged.total_count == 3

    def test_merge_all_of_nothing_is_empty(self):
        assert not ConflictReport.merge_all([]).has_conflicts
