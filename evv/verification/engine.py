from __future__ import annotations

"""
Drive the EVV visit lifecycle.

Design intent:
- Every mutation is load -> check state -> mutate a copy -> seal -> versioned save.
- A per-visit keyed lock makes each read-modify-write atomic in-process; the
  store's version check plus bounded retry covers writers in other processes.
- Geofence and timing problems become anomaly flags; only invalid input,
  invalid transitions and integrity failures are raised.
"""

import datetime as _dt
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from evv.geo.geofence import GeofenceValidator
from evv.integrations.gateway import (
    CaregiverRegistry,
    PersistenceGateway,
    SchedulingGateway,
    StoreBackedPersistence,
)
from evv.integrity.export import build_audit_export
from evv.integrity.hasher import IntegrityHasher
from evv.internal_core import audit
from evv.internal_core.config import EVVConfig, load_config
from evv.internal_core.contracts import (
    Amendment,
    AnomalyFlag,
    AuditEvent,
    AuditEventType,
    AuditExport,
    GeofenceCheck,
    LocationEvidence,
    LocationFix,
    Resolution,
    SweepResult,
    VisitFilter,
    VisitRecord,
    VisitStatus,
)
from evv.internal_core.errors import (
    ConcurrencyConflictError,
    EVVError,
    ImplausibleTimingError,
    IntegrityMismatchError,
    InvalidInputError,
    InvalidTransitionError,
)
from evv.internal_core.keyed_lock import KeyedLock
from evv.internal_core.visit_store import InMemoryVisitStore
from evv.timing.reconciler import TimeReconciler, require_aware, resolve_timezone

from .elements import missing_evv_elements
from .state_machine import require_operation

logger = logging.getLogger(__name__)

_RESOLUTION_OUTCOMES = {"verified", "closed"}


def _utc_now() -> datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _require_text(value: Optional[str], field_name: str, *, visit_id: str, operation: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise InvalidInputError(f"{field_name} is required", visit_id=visit_id, operation=operation)
    return text


class VisitVerificationEngine:
    def __init__(
        self,
        persistence: PersistenceGateway,
        *,
        hasher: IntegrityHasher,
        scheduling: Optional[SchedulingGateway] = None,
        caregivers: Optional[CaregiverRegistry] = None,
        config: Optional[EVVConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._cfg = config or EVVConfig()
        self._persistence = persistence
        self._hasher = hasher
        self._scheduling = scheduling
        self._caregivers = caregivers
        self._clock = clock or _utc_now
        self._geofence = GeofenceValidator(self._cfg.EVV_DEFAULT_GEOFENCE_RADIUS_METERS)
        self._reconciler = TimeReconciler(
            max_variance_minutes=self._cfg.EVV_VARIANCE_MAX_MINUTES,
            max_variance_percent=self._cfg.EVV_VARIANCE_MAX_PERCENT,
            min_visit_minutes=self._cfg.EVV_MIN_VISIT_MINUTES,
            max_visit_minutes=self._cfg.EVV_MAX_VISIT_MINUTES,
        )
        self._locks = KeyedLock()

    @property
    def persistence(self) -> PersistenceGateway:
        return self._persistence

    @property
    def hasher(self) -> IntegrityHasher:
        return self._hasher

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def register_visit(self, visit_id: str) -> VisitRecord:
        """Create version 1 from scheduling data; an existing record is returned unchanged."""
        if self._scheduling is None:
            raise EVVError("No scheduling gateway configured", visit_id=visit_id, operation="register_visit")

        with self._locks.hold(visit_id):
            if self._persistence.exists(visit_id):
                return self._load_checked(visit_id, "register_visit")

            data = self._scheduling.get_visit_data(visit_id)
            if data.visit_id != visit_id:
                raise InvalidInputError(
                    f"Scheduling returned visit {data.visit_id} for {visit_id}",
                    visit_id=visit_id,
                    operation="register_visit",
                )
            tz_name = data.timezone or self._cfg.EVV_DEFAULT_TIMEZONE
            resolve_timezone(tz_name)
            scheduled_minutes = self._reconciler.scheduled_minutes(
                data.service_date, data.scheduled_start, data.scheduled_end, tz_name
            )
            address = data.address.model_copy(
                update={"geofence_radius_meters": self._geofence.resolve_radius(data.address)}
            )
            now = self._clock()
            record = VisitRecord(
                visit_id=data.visit_id,
                organization_id=data.organization_id,
                branch_id=data.branch_id,
                client_id=data.client_id,
                caregiver_id=data.caregiver_id,
                service_type_code=data.service_type_code,
                service_date=data.service_date,
                scheduled_start=data.scheduled_start,
                scheduled_end=data.scheduled_end,
                scheduled_duration_minutes=round(scheduled_minutes, 2),
                timezone=tz_name,
                address=address,
                created_at=now,
                updated_at=now,
            )
            try:
                created = self._persistence.create(record)
            except ConcurrencyConflictError:
                # Another writer registered it first.
                return self._load_checked(visit_id, "register_visit")

        logger.info("visit_registered visit_id=%s scheduled_minutes=%.1f", visit_id, scheduled_minutes)
        self._audit(created, "VISIT_REGISTERED", "OK", "Visit registered from scheduling data")
        return created

    def check_in(
        self,
        visit_id: str,
        location: Optional[LocationFix],
        timestamp: datetime,
        actor_id: str,
    ) -> VisitRecord:
        timestamp = require_aware(timestamp, "timestamp", visit_id=visit_id)
        actor_id = _require_text(actor_id, "actor_id", visit_id=visit_id, operation="check_in")

        def mutate(record: VisitRecord) -> VisitRecord:
            anomalies = list(record.anomalies)
            update: dict = {}
            if record.status == VisitStatus.FLAGGED:
                anomalies = [
                    self._close_anomaly(item, actor_id, "Superseded by check-in retry")
                    if not item.resolved
                    else item
                    for item in anomalies
                ]
                update.update(
                    {
                        "actual_end": None,
                        "actual_duration_minutes": None,
                        "check_out_fix": None,
                        "reconciliation": None,
                        "flag_reasons": [],
                    }
                )

            check = self._geofence.classify(location, record.address)
            anomalies.extend(self._location_anomalies(check, location, timestamp, "check_in"))

            _, scheduled_end_at = self._reconciler.scheduled_window(
                record.service_date, record.scheduled_start, record.scheduled_end, record.timezone
            )
            if timestamp > scheduled_end_at:
                anomalies.append(
                    self._anomaly(
                        "OUT_OF_ORDER_EVENT",
                        f"Check-in at {timestamp.isoformat()} is after the scheduled end {scheduled_end_at.isoformat()}",
                        "check_in",
                        timestamp,
                    )
                )

            caregiver_id = record.caregiver_id or actor_id
            caregiver = record.caregiver
            if self._caregivers is not None and (caregiver is None or caregiver.caregiver_id != caregiver_id):
                caregiver = self._caregivers.get_caregiver_data(caregiver_id)
                if caregiver is None:
                    logger.info("caregiver_not_in_registry visit_id=%s caregiver_id=%s", visit_id, caregiver_id)

            update.update(
                {
                    "status": VisitStatus.CHECKED_IN,
                    "actual_start": timestamp,
                    "address_verified": check.within_tolerance,
                    "check_in_fix": LocationEvidence(
                        fix=location, recorded_at=timestamp, actor_id=actor_id, geofence=check
                    ),
                    "caregiver_id": caregiver_id,
                    "caregiver": caregiver,
                    "anomalies": anomalies,
                }
            )
            return record.model_copy(update=update, deep=True)

        saved = self._mutate(visit_id, "check_in", mutate, actor_id=actor_id)
        self._audit(saved, "CHECK_IN", self._geofence_code(saved.check_in_fix), "Checked in", actor_id=actor_id)
        return saved

    def start_service(self, visit_id: str, timestamp: datetime, actor_id: str) -> VisitRecord:
        timestamp = require_aware(timestamp, "timestamp", visit_id=visit_id)
        actor_id = _require_text(actor_id, "actor_id", visit_id=visit_id, operation="start_service")

        def mutate(record: VisitRecord) -> VisitRecord:
            if record.actual_start is not None and timestamp < record.actual_start:
                raise ImplausibleTimingError(
                    f"Service start {timestamp.isoformat()} precedes check-in {record.actual_start.isoformat()}",
                    visit_id=visit_id,
                    current_state=record.status.value,
                    operation="start_service",
                )
            return record.model_copy(update={"status": VisitStatus.IN_PROGRESS}, deep=True)

        saved = self._mutate(visit_id, "start_service", mutate, actor_id=actor_id)
        self._audit(saved, "SERVICE_STARTED", "OK", f"Service started at {timestamp.isoformat()}", actor_id=actor_id)
        return saved

    def check_out(
        self,
        visit_id: str,
        location: Optional[LocationFix],
        timestamp: datetime,
        actor_id: str,
    ) -> VisitRecord:
        timestamp = require_aware(timestamp, "timestamp", visit_id=visit_id)
        actor_id = _require_text(actor_id, "actor_id", visit_id=visit_id, operation="check_out")

        def mutate(record: VisitRecord) -> VisitRecord:
            if record.actual_start is None:
                raise InvalidInputError(
                    "Visit has no recorded check-in time",
                    visit_id=visit_id,
                    current_state=record.status.value,
                    operation="check_out",
                )
            if timestamp < record.actual_start:
                raise ImplausibleTimingError(
                    f"Check-out {timestamp.isoformat()} precedes check-in {record.actual_start.isoformat()}",
                    visit_id=visit_id,
                    current_state=record.status.value,
                    operation="check_out",
                )
            check = self._geofence.classify(location, record.address)
            anomalies = list(record.anomalies)
            anomalies.extend(self._location_anomalies(check, location, timestamp, "check_out"))
            duration = self._reconciler.actual_minutes(record.actual_start, timestamp)
            return record.model_copy(
                update={
                    "status": VisitStatus.CHECKED_OUT,
                    "actual_end": timestamp,
                    "actual_duration_minutes": round(duration, 2),
                    "address_verified": record.address_verified and check.within_tolerance,
                    "check_out_fix": LocationEvidence(
                        fix=location, recorded_at=timestamp, actor_id=actor_id, geofence=check
                    ),
                    "anomalies": anomalies,
                },
                deep=True,
            )

        saved = self._mutate(visit_id, "check_out", mutate, actor_id=actor_id)
        self._audit(saved, "CHECK_OUT", self._geofence_code(saved.check_out_fix), "Checked out", actor_id=actor_id)
        return saved

    def verify(self, visit_id: str) -> VisitRecord:
        def mutate(record: VisitRecord) -> VisitRecord:
            try:
                outcome = self._reconciler.reconcile(
                    service_date=record.service_date,
                    scheduled_start=record.scheduled_start,
                    scheduled_end=record.scheduled_end,
                    tz_name=record.timezone,
                    actual_start=record.actual_start,
                    actual_end=record.actual_end,
                )
            except InvalidInputError as exc:
                exc.visit_id = visit_id
                exc.current_state = record.status.value
                exc.operation = "verify"
                raise

            now = self._clock()
            anomalies = list(record.anomalies)
            anomalies.extend(self._anomaly(code, detail, "verify", now) for code, detail in outcome.anomalies)
            missing = missing_evv_elements(record)
            if missing:
                anomalies.append(
                    self._anomaly("MISSING_EVV_ELEMENT", f"Missing EVV elements: {', '.join(missing)}", "verify", now)
                )
            open_items = [item for item in anomalies if not item.resolved]

            if outcome.within_policy and not open_items:
                return record.model_copy(
                    update={
                        "status": VisitStatus.VERIFIED,
                        "reconciliation": outcome.reconciliation,
                        "anomalies": anomalies,
                        "flag_reasons": [],
                    },
                    deep=True,
                )
            return record.model_copy(
                update={
                    "status": VisitStatus.FLAGGED,
                    "reconciliation": outcome.reconciliation,
                    "anomalies": anomalies,
                    "flag_reasons": [f"{item.code}: {item.detail}" for item in open_items],
                },
                deep=True,
            )

        saved = self._mutate(visit_id, "verify", mutate)
        if saved.status == VisitStatus.VERIFIED:
            self._hasher.verify(saved)
            logger.info("visit_verified visit_id=%s version=%s hash=%s", visit_id, saved.version, saved.integrity_hash)
            self._audit(saved, "VERIFIED", "OK", f"Sealed with hash {saved.integrity_hash}")
        else:
            logger.info("visit_flagged visit_id=%s reasons=%s", visit_id, saved.flag_reasons)
            self._audit(saved, "FLAGGED", "REVIEW_REQUIRED", "; ".join(saved.flag_reasons))
        return saved

    def resolve(
        self,
        visit_id: str,
        resolution_note: str,
        actor_id: str,
        outcome: str = "verified",
    ) -> VisitRecord:
        note = _require_text(resolution_note, "resolution_note", visit_id=visit_id, operation="resolve")
        actor_id = _require_text(actor_id, "actor_id", visit_id=visit_id, operation="resolve")
        if outcome not in _RESOLUTION_OUTCOMES:
            raise InvalidInputError(
                f"outcome must be one of {sorted(_RESOLUTION_OUTCOMES)}, got {outcome!r}",
                visit_id=visit_id,
                operation="resolve",
            )

        def mutate(record: VisitRecord) -> VisitRecord:
            now = self._clock()
            anomalies = [
                self._close_anomaly(item, actor_id, note, now) if not item.resolved else item
                for item in record.anomalies
            ]
            return record.model_copy(
                update={
                    "status": VisitStatus.VERIFIED if outcome == "verified" else VisitStatus.CLOSED,
                    "anomalies": anomalies,
                    "resolution": Resolution(
                        outcome=outcome,
                        note=note,
                        actor_id=actor_id,
                        resolved_at=now,
                        override=outcome == "verified",
                    ),
                },
                deep=True,
            )

        saved = self._mutate(visit_id, "resolve", mutate, actor_id=actor_id)
        code = "OVERRIDE_VERIFIED" if outcome == "verified" else "CLOSED"
        self._audit(saved, "RESOLVED", code, note, actor_id=actor_id)
        return saved

    def amend(self, visit_id: str, note: str, actor_id: str) -> VisitRecord:
        """Append a correction note to a finalized visit as a new chained version."""
        note = _require_text(note, "note", visit_id=visit_id, operation="amend")
        actor_id = _require_text(actor_id, "actor_id", visit_id=visit_id, operation="amend")

        def mutate(record: VisitRecord) -> VisitRecord:
            amendments = list(record.amendments)
            amendments.append(Amendment(note=note, actor_id=actor_id, amended_at=self._clock()))
            return record.model_copy(update={"amendments": amendments}, deep=True)

        saved = self._mutate(visit_id, "amend", mutate, actor_id=actor_id)
        self._audit(saved, "AMENDED", "OK", note, actor_id=actor_id)
        return saved

    def sweep(self, visit_filter: Optional[VisitFilter] = None) -> list[SweepResult]:
        """Verify every checked-out visit matching the filter."""
        base = visit_filter or VisitFilter()
        candidates = self._persistence.list(base.model_copy(update={"statuses": [VisitStatus.CHECKED_OUT]}))
        results: list[SweepResult] = []
        for record in candidates:
            try:
                verified = self.verify(record.visit_id)
            except EVVError as exc:
                logger.warning("sweep_visit_failed visit_id=%s code=%s message=%s", record.visit_id, exc.code, exc.message)
                results.append(SweepResult(visit_id=record.visit_id, error_code=exc.code, message=exc.message))
                continue
            results.append(SweepResult(visit_id=record.visit_id, status=verified.status))
        logger.info("sweep_done candidates=%s", len(candidates))
        return results

    def update_visit_status(
        self,
        visit_id: str,
        status: VisitStatus,
        *,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        """Apply a scheduling-side status projection under the visit lock."""
        return self._project(
            visit_id,
            f"update_visit_status:{status.value}",
            lambda version: self._persistence.update_visit_status(
                visit_id, status, version, actor_id=actor_id
            ),
            actor_id=actor_id,
        )

    def update_visit_timing(
        self,
        visit_id: str,
        *,
        actual_start: Optional[datetime] = None,
        actual_end: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        if actual_start is not None:
            require_aware(actual_start, "actual_start", visit_id=visit_id)
        if actual_end is not None:
            require_aware(actual_end, "actual_end", visit_id=visit_id)
        return self._project(
            visit_id,
            "update_visit_timing",
            lambda version: self._persistence.update_visit_timing(
                visit_id,
                version,
                actual_start=actual_start,
                actual_end=actual_end,
                actor_id=actor_id,
            ),
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_visit(self, visit_id: str) -> VisitRecord:
        return self._load_checked(visit_id, "get_visit")

    def history(self, visit_id: str) -> list[VisitRecord]:
        return self._persistence.history(visit_id)

    def audit_events(self, visit_id: str) -> list[AuditEvent]:
        return self._persistence.audit_events(visit_id)

    def export_audit(
        self,
        visit_ids: Optional[Sequence[str]] = None,
        visit_filter: Optional[VisitFilter] = None,
    ) -> AuditExport:
        if visit_ids is None:
            visit_ids = [item.visit_id for item in self._persistence.list(visit_filter)]
        histories = {visit_id: self._persistence.history(visit_id) for visit_id in visit_ids}
        try:
            return build_audit_export(self._hasher, histories)
        except IntegrityMismatchError as exc:
            self._report_integrity_failure(exc)
            raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mutate(
        self,
        visit_id: str,
        operation: str,
        mutator: Callable[[VisitRecord], VisitRecord],
        *,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        attempts = max(1, int(self._cfg.EVV_SAVE_MAX_ATTEMPTS))
        with self._locks.hold(visit_id):
            for attempt in range(1, attempts + 1):
                record = self._load_checked(visit_id, operation)
                try:
                    require_operation(visit_id, record.status, operation)
                except InvalidTransitionError as exc:
                    logger.info(
                        "transition_rejected visit_id=%s state=%s operation=%s",
                        visit_id,
                        record.status.value,
                        operation,
                    )
                    self._audit(record, "TRANSITION_REJECTED", exc.code, exc.message, actor_id=actor_id)
                    raise

                updated = mutator(record.model_copy(deep=True))
                try:
                    saved = self._persistence.commit(updated, record.version)
                except ConcurrencyConflictError as exc:
                    logger.warning(
                        "save_conflict visit_id=%s operation=%s attempt=%s/%s expected=%s stored=%s",
                        visit_id,
                        operation,
                        attempt,
                        attempts,
                        exc.expected_version,
                        exc.stored_version,
                    )
                    self._audit(record, "CONFLICT_RETRY", exc.code, exc.message, actor_id=actor_id)
                    if attempt == attempts:
                        exc.operation = operation
                        raise
                    continue

                logger.info(
                    "visit_transition visit_id=%s operation=%s from=%s to=%s version=%s",
                    visit_id,
                    operation,
                    record.status.value,
                    saved.status.value,
                    saved.version,
                )
                return saved
        raise AssertionError("unreachable")

    def _project(
        self,
        visit_id: str,
        operation: str,
        apply: Callable[[int], VisitRecord],
        *,
        actor_id: Optional[str] = None,
    ) -> VisitRecord:
        attempts = max(1, int(self._cfg.EVV_SAVE_MAX_ATTEMPTS))
        with self._locks.hold(visit_id):
            for attempt in range(1, attempts + 1):
                record = self._load_checked(visit_id, operation)
                try:
                    saved = apply(record.version)
                except ConcurrencyConflictError as exc:
                    logger.warning(
                        "projection_conflict visit_id=%s operation=%s attempt=%s/%s",
                        visit_id,
                        operation,
                        attempt,
                        attempts,
                    )
                    self._audit(record, "CONFLICT_RETRY", exc.code, exc.message, actor_id=actor_id)
                    if attempt == attempts:
                        exc.operation = operation
                        raise
                    continue
                except IntegrityMismatchError as exc:
                    exc.operation = operation
                    self._report_integrity_failure(exc)
                    raise
                logger.info(
                    "visit_projection visit_id=%s operation=%s version=%s",
                    visit_id,
                    operation,
                    saved.version,
                )
                return saved
        raise AssertionError("unreachable")

    def _load_checked(self, visit_id: str, operation: str) -> VisitRecord:
        try:
            return self._persistence.load_verified(visit_id)
        except IntegrityMismatchError as exc:
            exc.operation = operation
            self._report_integrity_failure(exc)
            raise

    def _report_integrity_failure(self, exc: IntegrityMismatchError) -> None:
        logger.error(
            "integrity_mismatch visit_id=%s state=%s operation=%s detail=%s",
            exc.visit_id,
            exc.current_state,
            exc.operation,
            exc.message,
        )
        if exc.visit_id:
            audit.log_event(self._persistence, exc.visit_id, "INTEGRITY_MISMATCH", exc.code, exc.message)

    def _audit(
        self,
        record: VisitRecord,
        event_type: AuditEventType,
        code: str,
        detail: str,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        audit.log_event(
            self._persistence,
            record.visit_id,
            event_type,
            code,
            detail,
            actor_id=actor_id,
            version=record.version,
        )

    def _anomaly(self, code: str, detail: str, event: str, raised_at: datetime) -> AnomalyFlag:
        return AnomalyFlag(code=code, detail=detail, event=event, raised_at=raised_at)

    def _close_anomaly(
        self,
        item: AnomalyFlag,
        actor_id: str,
        note: str,
        at: Optional[datetime] = None,
    ) -> AnomalyFlag:
        return item.model_copy(
            update={
                "resolved": True,
                "resolved_by": actor_id,
                "resolved_at": at or self._clock(),
                "resolution_note": note,
            }
        )

    def _location_anomalies(
        self,
        check: GeofenceCheck,
        fix: Optional[LocationFix],
        timestamp: datetime,
        event: str,
    ) -> list[AnomalyFlag]:
        flags: list[AnomalyFlag] = []
        if check.status == "outside":
            flags.append(
                self._anomaly(
                    "GEOFENCE_OUTSIDE",
                    f"{check.reason}: {check.distance_meters:.1f} m from address, "
                    f"limit {check.effective_radius_meters:.1f} m",
                    event,
                    timestamp,
                )
            )
        elif check.status == "unverifiable":
            flags.append(self._anomaly("GEOFENCE_UNVERIFIABLE", check.reason or "Location unverifiable", event, timestamp))
        elif check.requires_manual_review:
            flags.append(
                self._anomaly(
                    "LOCATION_UNCERTAIN",
                    f"{check.reason}: {check.distance_meters:.1f} m from address with "
                    f"{check.accuracy_meters:.1f} m accuracy",
                    event,
                    timestamp,
                )
            )

        if fix is None:
            return flags
        if fix.mock_location_detected:
            flags.append(self._anomaly("MOCK_LOCATION", "Device reported a mock location provider", event, timestamp))
        if fix.captured_at is not None:
            captured_at = require_aware(fix.captured_at, "location.captured_at")
            skew = abs((timestamp - captured_at).total_seconds())
            if skew > self._cfg.EVV_MAX_CLOCK_SKEW_SECONDS:
                flags.append(
                    self._anomaly(
                        "CLOCK_SKEW",
                        f"Fix captured {skew:.0f} s from the event time "
                        f"(limit {self._cfg.EVV_MAX_CLOCK_SKEW_SECONDS} s)",
                        event,
                        timestamp,
                    )
                )
        return flags

    @staticmethod
    def _geofence_code(evidence: Optional[LocationEvidence]) -> str:
        if evidence is None:
            return "GEOFENCE_UNKNOWN"
        return f"GEOFENCE_{evidence.geofence.status.upper()}"


def build_engine(
    *,
    config: Optional[EVVConfig] = None,
    store: Optional[InMemoryVisitStore] = None,
    scheduling: Optional[SchedulingGateway] = None,
    caregivers: Optional[CaregiverRegistry] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> VisitVerificationEngine:
    cfg = config or load_config()
    hasher = IntegrityHasher(secret=cfg.EVV_HMAC_SECRET)
    persistence = StoreBackedPersistence(store or InMemoryVisitStore(), hasher)
    return VisitVerificationEngine(
        persistence,
        hasher=hasher,
        scheduling=scheduling,
        caregivers=caregivers,
        config=cfg,
        clock=clock,
    )
