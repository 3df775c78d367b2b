from __future__ import annotations

import datetime as _dt
from abc import ABC, abstractmethod
from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional

from evv.integrity.hasher import IntegrityHasher
from evv.internal_core import audit
from evv.internal_core.contracts import (
    TERMINAL_STATUSES,
    AuditEvent,
    CaregiverData,
    VisitData,
    VisitFilter,
    VisitRecord,
    VisitStatus,
)
from evv.internal_core.errors import (
    CollaboratorUnavailableError,
    InvalidTransitionError,
    VisitNotFoundError,
)
from evv.internal_core.visit_store import InMemoryVisitStore
from evv.timing.reconciler import TimeReconciler
from evv.verification.state_machine import can_transition


def _utc_now() -> datetime:
    return _dt.datetime.now(_dt.timezone.utc)


class SchedulingGateway(ABC):
    @abstractmethod
    def get_visit_data(self, visit_id: str) -> VisitData: ...

    @abstractmethod
    def name(self) -> str: ...


class CaregiverRegistry(ABC):
    @abstractmethod
    def get_caregiver_data(self, caregiver_id: str) -> Optional[CaregiverData]:
        """Reference data for a caregiver, or None when the registry does not know the id."""

    @abstractmethod
    def name(self) -> str: ...


class PersistenceGateway(ABC):
    @abstractmethod
    def create(self, record: VisitRecord) -> VisitRecord: ...

    @abstractmethod
    def exists(self, visit_id: str) -> bool: ...

    @abstractmethod
    def load(self, visit_id: str) -> VisitRecord: ...

    @abstractmethod
    def load_verified(self, visit_id: str) -> VisitRecord:
        """Load the current version after checking its hash, chain link and signature."""

    @abstractmethod
    def save(self, record: VisitRecord, expected_version: int) -> VisitRecord: ...

    @abstractmethod
    def commit(self, record: VisitRecord, expected_version: int) -> VisitRecord:
        """Stamp version and updated_at, extend the hash chain, then save."""

    @abstractmethod
    def history(self, visit_id: str) -> List[VisitRecord]: ...

    @abstractmethod
    def list(self, visit_filter: Optional[VisitFilter] = None) -> List[VisitRecord]: ...

    @abstractmethod
    def append_audit_event(self, visit_id: str, event: AuditEvent) -> None: ...

    @abstractmethod
    def audit_events(self, visit_id: str) -> List[AuditEvent]: ...

    def update_visit_status(
        self,
        visit_id: str,
        status: VisitStatus,
        expected_version: int,
        *,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        """Mirror a status change without running the verification flow.

        Only non-terminal targets reachable from the current status are accepted;
        VERIFIED and CLOSED are reserved for the engine.
        """
        record = self.load_verified(visit_id)
        if (
            record.status in TERMINAL_STATUSES
            or status in TERMINAL_STATUSES
            or not can_transition(record.status, status)
        ):
            raise InvalidTransitionError(visit_id, record.status.value, f"update_visit_status:{status.value}")
        saved = self.commit(record.model_copy(update={"status": status}, deep=True), expected_version)
        audit.log_event(
            self,
            visit_id,
            "PROJECTION_UPDATED",
            f"STATUS_{status.value}",
            f"Status projected from {record.status.value}",
            actor_id=actor_id,
            version=saved.version,
        )
        return saved

    def update_visit_timing(
        self,
        visit_id: str,
        expected_version: int,
        *,
        actual_start: Optional[datetime] = None,
        actual_end: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        record = self.load_verified(visit_id)
        if record.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(visit_id, record.status.value, "update_visit_timing")
        start = actual_start if actual_start is not None else record.actual_start
        end = actual_end if actual_end is not None else record.actual_end
        duration = None
        if start is not None and end is not None:
            duration = round(TimeReconciler().actual_minutes(start, end), 2)
        updated = record.model_copy(
            update={"actual_start": start, "actual_end": end, "actual_duration_minutes": duration},
            deep=True,
        )
        saved = self.commit(updated, expected_version)
        audit.log_event(
            self,
            visit_id,
            "PROJECTION_UPDATED",
            "TIMING",
            f"Timing projected: start={start.isoformat() if start else None} end={end.isoformat() if end else None}",
            actor_id=actor_id,
            version=saved.version,
        )
        return saved


class StoreBackedPersistence(PersistenceGateway):
    def __init__(self, store: InMemoryVisitStore, hasher: IntegrityHasher) -> None:
        self._store = store
        self._hasher = hasher

    @property
    def store(self) -> InMemoryVisitStore:
        return self._store

    def create(self, record: VisitRecord) -> VisitRecord:
        sealed = self._hasher.seal(record.model_copy(update={"version": 1}, deep=True), None)
        return self._store.create(sealed)

    def exists(self, visit_id: str) -> bool:
        return self._store.exists(visit_id)

    def load(self, visit_id: str) -> VisitRecord:
        return self._store.load(visit_id)

    def load_verified(self, visit_id: str) -> VisitRecord:
        # One history read keeps the current version and its predecessor consistent.
        versions = self._store.history(visit_id)
        record = versions[-1]
        self._hasher.verify_stored(record, versions[-2] if len(versions) > 1 else None)
        return record

    def save(self, record: VisitRecord, expected_version: int) -> VisitRecord:
        return self._store.save(record, expected_version)

    def commit(self, record: VisitRecord, expected_version: int) -> VisitRecord:
        # record.integrity_hash still holds the hash of the version it was loaded from.
        staged = record.model_copy(
            update={"version": expected_version + 1, "updated_at": _utc_now()},
            deep=True,
        )
        sealed = self._hasher.seal(staged, record.integrity_hash)
        return self._store.save(sealed, expected_version)

    def history(self, visit_id: str) -> List[VisitRecord]:
        return self._store.history(visit_id)

    def list(self, visit_filter: Optional[VisitFilter] = None) -> List[VisitRecord]:
        return self._store.list(visit_filter)

    def append_audit_event(self, visit_id: str, event: AuditEvent) -> None:
        self._store.append_audit_event(visit_id, event)

    def audit_events(self, visit_id: str) -> List[AuditEvent]:
        return self._store.audit_events(visit_id)


class InMemorySchedulingGateway(SchedulingGateway):
    def __init__(self, visits: Optional[List[VisitData]] = None) -> None:
        self._lock = RLock()
        self._visits: Dict[str, VisitData] = {item.visit_id: item for item in visits or []}
        self.available = True

    def add_visit(self, visit: VisitData) -> None:
        with self._lock:
            self._visits[visit.visit_id] = visit

    def get_visit_data(self, visit_id: str) -> VisitData:
        if not self.available:
            raise CollaboratorUnavailableError(self.name(), "scheduling service timed out", visit_id=visit_id)
        with self._lock:
            visit = self._visits.get(visit_id)
        if visit is None:
            raise VisitNotFoundError(visit_id, operation="get_visit_data")
        return visit.model_copy(deep=True)

    def name(self) -> str:
        return "scheduling"


class InMemoryCaregiverRegistry(CaregiverRegistry):
    def __init__(self, caregivers: Optional[List[CaregiverData]] = None) -> None:
        self._caregivers: Dict[str, CaregiverData] = {item.caregiver_id: item for item in caregivers or []}
        self.available = True

    def get_caregiver_data(self, caregiver_id: str) -> Optional[CaregiverData]:
        if not self.available:
            raise CollaboratorUnavailableError(self.name(), "caregiver registry timed out")
        caregiver = self._caregivers.get(caregiver_id)
        return caregiver.model_copy(deep=True) if caregiver is not None else None

    def name(self) -> str:
        return "caregiver_registry"
