"""
Scheduling Domain

Recurring appointments and calendar blocks for a practitioner, backed by
the clinic REST API.

Structure:
```
domain/scheduling/
├── models.py           # Intervals, appointments, blocks, conflict reports
├── errors.py           # Scheduling exceptions
├── time_calculator.py  # Date arithmetic (weeks start on Sunday)
├── recurrence.py       # Weekly / biweekly expansion, series ids
├── conflicts.py        # Overlap detection against existing items
├── resolution.py       # Conflict decision state machine
├── series_mutator.py   # Single vs this-and-following edits and deletes
├── validation.py       # Payload validation, field-keyed errors
├── schemas.py          # HTTP request / response payloads
├── repository.py       # Clinic REST API client
├── service.py          # Orchestration of one operation
└── router.py           # FastAPI endpoints
```

Operation flow:
    validation -> recurrence (creation only) -> conflicts
    -> resolution (user decision when conflicted) -> mutation -> backend

Nothing is written before the conflict decision. A batch either commits
completely or is rolled back; whatever could not be rolled back is reported.
"""

from .router import router

__all__ = ["router"]
