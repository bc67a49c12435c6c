"""
Recurrence expansion.

Turns an anchor interval plus a recurrence pattern into the concrete
occurrences that will be conflict-checked and created.
"""

import logging
import uuid
from typing import Callable, Optional

from pydantic import BaseModel

from .errors import InvalidIntervalError
from .models import RecurrencePattern, TimeInterval
from .time_calculator import ensure_valid_interval

logger = logging.getLogger(__name__)


def new_series_id() -> str:
    return str(uuid.uuid4())


class Expansion(BaseModel):
    """Occurrences generated from one anchor, in chronological order"""

    instances: list[TimeInterval]
    series_id: Optional[str] = None

    @property
    def is_series(self) -> bool:
        return self.series_id is not None


class RecurrenceExpander:
    """Expands weekly / biweekly patterns into concrete intervals"""

    def __init__(self, series_id_factory: Callable[[], str] = new_series_id):
        self.series_id_factory = series_id_factory

    def expand(self, anchor: TimeInterval, pattern: RecurrencePattern) -> Expansion:
        """
        Expand ``anchor`` according to ``pattern``.

        Occurrence ``i`` starts ``i * step`` after the anchor and keeps the
        anchor's duration. A single occurrence gets no series id.

        Raises:
            InvalidIntervalError: If the anchor does not end after it starts,
                or the last occurrence is past the supported date range
            ValueError: If the pattern count is below 1
        """
        ensure_valid_interval(anchor)

        count = pattern.occurrences
        if count < 1:
            raise ValueError(f"Recurrence count must be at least 1, got {count}")

        step = pattern.step
        try:
            instances = [anchor.shifted(step * i) for i in range(count)]
        except OverflowError:
            raise InvalidIntervalError(
                f"{count} occurrence(s) from {anchor.start.isoformat()} fall outside the supported date range"
            ) from None
        series_id = self.series_id_factory() if count > 1 else None

        logger.debug(
            f"Expanded {anchor.start.isoformat()} ({pattern.type.value}) into {count} occurrence(s)"
        )
        return Expansion(instances=instances, series_id=series_id)
