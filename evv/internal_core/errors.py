from __future__ import annotations

from typing import Any, Optional


class EVVError(RuntimeError):
    code = "EVV_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        visit_id: Optional[str] = None,
        current_state: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.visit_id = visit_id
        self.current_state = current_state
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "visit_id": self.visit_id,
            "current_state": self.current_state,
            "operation": self.operation,
            "retryable": self.retryable,
        }


class InvalidInputError(EVVError):
    """Malformed or missing input; rejected before anything is persisted."""

    code = "INVALID_INPUT"


class ImplausibleTimingError(InvalidInputError):
    code = "IMPLAUSIBLE_TIMING"


class InvalidTransitionError(EVVError):
    code = "INVALID_TRANSITION"

    def __init__(self, visit_id: str, current_state: str, operation: str):
        super().__init__(
            f"Operation '{operation}' is not permitted for visit {visit_id} in state {current_state}",
            visit_id=visit_id,
            current_state=current_state,
            operation=operation,
        )


class ConcurrencyConflictError(EVVError):
    code = "CONCURRENCY_CONFLICT"
    retryable = True

    def __init__(
        self,
        visit_id: str,
        expected_version: int,
        stored_version: int,
        operation: Optional[str] = None,
    ):
        super().__init__(
            f"Version conflict for visit {visit_id}: expected {expected_version}, stored {stored_version}",
            visit_id=visit_id,
            operation=operation,
        )
        self.expected_version = expected_version
        self.stored_version = stored_version


class IntegrityMismatchError(EVVError):
    """Recomputed hash or signature disagrees with the stored value."""

    code = "INTEGRITY_MISMATCH"


class VisitNotFoundError(EVVError):
    code = "VISIT_NOT_FOUND"

    def __init__(self, visit_id: str, operation: Optional[str] = None):
        super().__init__(f"Unknown visit_id: {visit_id}", visit_id=visit_id, operation=operation)


class CollaboratorUnavailableError(EVVError):
    code = "COLLABORATOR_UNAVAILABLE"
    retryable = True

    def __init__(self, collaborator: str, message: str, *, visit_id: Optional[str] = None):
        super().__init__(f"{collaborator} unavailable: {message}", visit_id=visit_id)
        self.collaborator = collaborator
