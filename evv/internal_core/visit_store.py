from __future__ import annotations

from threading import RLock
from typing import Any, Dict, List, Optional

from .contracts import AuditEvent, VisitFilter, VisitRecord
from .errors import ConcurrencyConflictError, InvalidInputError, VisitNotFoundError


class InMemoryVisitStore:
    """Versioned visit storage with optimistic-concurrency writes.

    Every successful save moves the previously stored version onto an
    append-only history list. Callers always receive deep copies.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._visits: Dict[str, Dict[str, Any]] = {}

    def create(self, record: VisitRecord) -> VisitRecord:
        if record.version != 1:
            raise InvalidInputError(
                f"New visit records must start at version 1, got {record.version}",
                visit_id=record.visit_id,
                operation="create",
            )
        with self._lock:
            if record.visit_id in self._visits:
                raise ConcurrencyConflictError(
                    record.visit_id,
                    expected_version=0,
                    stored_version=self._visits[record.visit_id]["current"].version,
                    operation="create",
                )
            self._visits[record.visit_id] = {
                "current": record.model_copy(deep=True),
                "history": [],
                "audit_events": [],
            }
        return record.model_copy(deep=True)

    def exists(self, visit_id: str) -> bool:
        with self._lock:
            return visit_id in self._visits

    def load(self, visit_id: str) -> VisitRecord:
        with self._lock:
            entry = self._visits.get(visit_id)
            if entry is None:
                raise VisitNotFoundError(visit_id, operation="load")
            return entry["current"].model_copy(deep=True)

    def save(self, record: VisitRecord, expected_version: int) -> VisitRecord:
        with self._lock:
            entry = self._visits.get(record.visit_id)
            if entry is None:
                raise VisitNotFoundError(record.visit_id, operation="save")
            stored: VisitRecord = entry["current"]
            if stored.version != expected_version:
                raise ConcurrencyConflictError(
                    record.visit_id,
                    expected_version=expected_version,
                    stored_version=stored.version,
                    operation="save",
                )
            if record.version != expected_version + 1:
                raise InvalidInputError(
                    f"Record version must be {expected_version + 1} when saving over "
                    f"version {expected_version}, got {record.version}",
                    visit_id=record.visit_id,
                    operation="save",
                )
            entry["history"].append(stored)
            entry["current"] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def history(self, visit_id: str) -> List[VisitRecord]:
        """All committed versions, oldest first, current version last."""
        with self._lock:
            entry = self._visits.get(visit_id)
            if entry is None:
                raise VisitNotFoundError(visit_id, operation="history")
            versions = list(entry["history"]) + [entry["current"]]
            return [item.model_copy(deep=True) for item in versions]

    def list(self, visit_filter: Optional[VisitFilter] = None) -> List[VisitRecord]:
        with self._lock:
            current = [entry["current"] for entry in self._visits.values()]
            return [
                item.model_copy(deep=True)
                for item in sorted(current, key=lambda r: (r.service_date, r.visit_id))
                if visit_filter is None or visit_filter.matches(item)
            ]

    def append_audit_event(self, visit_id: str, event: AuditEvent) -> None:
        with self._lock:
            entry = self._visits.get(visit_id)
            if entry is None:
                # Rejections for unknown visits have nowhere to attach.
                return
            entry["audit_events"].append(event)

    def audit_events(self, visit_id: str) -> List[AuditEvent]:
        with self._lock:
            entry = self._visits.get(visit_id)
            if entry is None:
                raise VisitNotFoundError(visit_id, operation="audit_events")
            return list(entry["audit_events"])

