"""
Conflict resolution policy.

Each create or edit operation walks this state machine exactly once:

    CLEAN        no conflicts, proceed
    CONFLICTED   conflicts found, waiting for the user's strategy
    RESOLVED     strategy applied (keep or cancel existing), proceed
    ABORTED      user gave up, nothing is written

Only appointments are ever cancelled. Conflicting blocks stay in place
whatever the strategy, both when the candidate is an appointment and when
it is itself a block.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .errors import InvalidTransitionError
from .models import ConflictReport, ResolutionStrategy


class ResolutionState(str, Enum):
    CLEAN = "clean"
    CONFLICTED = "conflicted"
    RESOLVED = "resolved"
    ABORTED = "aborted"


TERMINAL_STATES = {ResolutionState.RESOLVED, ResolutionState.ABORTED}


class ResolutionDecision(BaseModel):
    state: ResolutionState
    strategy: Optional[ResolutionStrategy] = None
    cancel_appointment_ids: list[str] = Field(default_factory=list)

    @property
    def proceed(self) -> bool:
        return self.state in (ResolutionState.CLEAN, ResolutionState.RESOLVED)

    @property
    def pending(self) -> bool:
        return self.state == ResolutionState.CONFLICTED


def initial_state(report: ConflictReport) -> ResolutionState:
    return ResolutionState.CONFLICTED if report.has_conflicts else ResolutionState.CLEAN


def cancellation_targets(report: ConflictReport) -> list[str]:
    # An existing appointment may overlap several occurrences of one batch
    return list(dict.fromkeys(report.conflicting_appointment_ids))


def transition(
    state: ResolutionState,
    report: ConflictReport,
    strategy: Optional[ResolutionStrategy],
) -> ResolutionDecision:
    """Apply ``strategy`` to ``state``; pure, no side effects"""
    if state in TERMINAL_STATES:
        raise InvalidTransitionError(f"Conflict decision already taken ({state.value})")

    if state == ResolutionState.CLEAN:
        return ResolutionDecision(state=ResolutionState.CLEAN, strategy=strategy)

    if strategy is None:
        return ResolutionDecision(state=ResolutionState.CONFLICTED)

    if strategy == ResolutionStrategy.ABORT:
        return ResolutionDecision(state=ResolutionState.ABORTED, strategy=strategy)

    if strategy == ResolutionStrategy.CANCEL_EXISTING:
        return ResolutionDecision(
            state=ResolutionState.RESOLVED,
            strategy=strategy,
            cancel_appointment_ids=cancellation_targets(report),
        )

    return ResolutionDecision(state=ResolutionState.RESOLVED, strategy=strategy)


def decide(report: ConflictReport, strategy: Optional[ResolutionStrategy]) -> ResolutionDecision:
    return transition(initial_state(report), report, strategy)


class ConflictResolutionPolicy:
    """Holds the decision state of a single operation"""

    def __init__(self, report: ConflictReport):
        self.report = report
        self.state = initial_state(report)

    def choose(self, strategy: Optional[ResolutionStrategy]) -> ResolutionDecision:
        decision = transition(self.state, self.report, strategy)
        self.state = decision.state
        return decision
