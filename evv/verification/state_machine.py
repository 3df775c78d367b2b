"""Visit lifecycle state machine."""

from __future__ import annotations

from evv.internal_core.contracts import VisitStatus
from evv.internal_core.errors import InvalidTransitionError

# Source states each engine operation may start from.
OPERATION_SOURCES: dict[str, frozenset[VisitStatus]] = {
    "check_in": frozenset({VisitStatus.SCHEDULED, VisitStatus.FLAGGED}),
    "start_service": frozenset({VisitStatus.CHECKED_IN}),
    "check_out": frozenset({VisitStatus.CHECKED_IN, VisitStatus.IN_PROGRESS}),
    "verify": frozenset({VisitStatus.CHECKED_OUT}),
    "resolve": frozenset({VisitStatus.FLAGGED}),
    "amend": frozenset({VisitStatus.VERIFIED, VisitStatus.CLOSED}),
}

NEXT_STATUSES: dict[VisitStatus, frozenset[VisitStatus]] = {
    VisitStatus.SCHEDULED: frozenset({VisitStatus.CHECKED_IN}),
    VisitStatus.CHECKED_IN: frozenset({VisitStatus.IN_PROGRESS, VisitStatus.CHECKED_OUT}),
    VisitStatus.IN_PROGRESS: frozenset({VisitStatus.CHECKED_OUT}),
    VisitStatus.CHECKED_OUT: frozenset({VisitStatus.VERIFIED, VisitStatus.FLAGGED}),
    VisitStatus.FLAGGED: frozenset({VisitStatus.VERIFIED, VisitStatus.CLOSED, VisitStatus.CHECKED_IN}),
    VisitStatus.VERIFIED: frozenset(),
    VisitStatus.CLOSED: frozenset(),
}


def can_transition(current: VisitStatus, target: VisitStatus) -> bool:
    return target in NEXT_STATUSES.get(current, frozenset())


def require_operation(visit_id: str, current: VisitStatus, operation: str) -> None:
    allowed = OPERATION_SOURCES.get(operation)
    if allowed is None or current not in allowed:
        raise InvalidTransitionError(visit_id, current.value, operation)
