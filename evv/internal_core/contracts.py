from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class VisitStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    CHECKED_OUT = "CHECKED_OUT"
    VERIFIED = "VERIFIED"
    FLAGGED = "FLAGGED"
    CLOSED = "CLOSED"


TERMINAL_STATUSES = frozenset({VisitStatus.VERIFIED, VisitStatus.CLOSED})

AnomalyCode = Literal[
    "GEOFENCE_OUTSIDE",
    "GEOFENCE_UNVERIFIABLE",
    "LOCATION_UNCERTAIN",
    "MOCK_LOCATION",
    "CLOCK_SKEW",
    "OUT_OF_ORDER_EVENT",
    "DURATION_VARIANCE",
    "VISIT_TOO_SHORT",
    "VISIT_TOO_LONG",
    "MISSING_EVV_ELEMENT",
]

GeofenceStatus = Literal["within", "outside", "unverifiable"]

ResolutionOutcome = Literal["verified", "closed"]


class LocationFix(BaseModel):
    model_config = ConfigDict(extra="forbid")

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    accuracy_meters: Optional[float] = Field(default=None, ge=0.0, le=1000.0)
    captured_at: Optional[datetime] = None
    method: Optional[str] = None
    mock_location_detected: bool = False


class ServiceAddress(BaseModel):
    model_config = ConfigDict(extra="forbid")

    line1: str = ""
    line2: Optional[str] = None
    city: str = ""
    region: str = ""
    postal_code: str = ""
    country: str = "US"
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    geofence_radius_meters: Optional[float] = Field(default=None, gt=0.0)
    allowed_variance_meters: float = Field(default=0.0, ge=0.0)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class GeofenceCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: GeofenceStatus
    distance_meters: Optional[float] = None
    radius_meters: Optional[float] = None
    effective_radius_meters: Optional[float] = None
    accuracy_meters: Optional[float] = None
    requires_manual_review: bool = False
    reason: Optional[str] = None

    @property
    def within_tolerance(self) -> bool:
        return self.status == "within"


class LocationEvidence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fix: Optional[LocationFix] = None
    recorded_at: datetime
    actor_id: str
    geofence: GeofenceCheck


class AnomalyFlag(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: AnomalyCode
    detail: str
    event: str
    raised_at: datetime
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None


class Reconciliation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scheduled_start_at: datetime
    scheduled_end_at: datetime
    scheduled_minutes: float
    actual_minutes: float
    variance_minutes: float
    variance_percent: float
    within_policy: bool


class Resolution(BaseModel):
    model_config = ConfigDict(extra="forbid")

    outcome: ResolutionOutcome
    note: str
    actor_id: str
    resolved_at: datetime
    override: bool = False


class Amendment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str
    actor_id: str
    amended_at: datetime


class CaregiverData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    caregiver_id: str
    name: str
    employee_number: str
    license_number: Optional[str] = None


class VisitData(BaseModel):
    """Scheduling-side view of a visit, as returned by the scheduling gateway."""

    model_config = ConfigDict(extra="forbid")

    visit_id: str = Field(min_length=1)
    organization_id: str
    branch_id: str
    client_id: str
    caregiver_id: Optional[str] = None
    service_type_code: Optional[str] = None
    service_date: date
    scheduled_start: time
    scheduled_end: time
    timezone: Optional[str] = None
    address: ServiceAddress


class VisitRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visit_id: str = Field(min_length=1)
    organization_id: str
    branch_id: str
    client_id: str
    caregiver_id: Optional[str] = None
    caregiver: Optional[CaregiverData] = None
    service_type_code: Optional[str] = None

    service_date: date
    scheduled_start: time
    scheduled_end: time
    scheduled_duration_minutes: float = Field(gt=0.0)
    timezone: str = "UTC"

    address: ServiceAddress
    address_verified: bool = False

    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    actual_duration_minutes: Optional[float] = None
    check_in_fix: Optional[LocationEvidence] = None
    check_out_fix: Optional[LocationEvidence] = None
    reconciliation: Optional[Reconciliation] = None

    status: VisitStatus = VisitStatus.SCHEDULED
    anomalies: List[AnomalyFlag] = Field(default_factory=list)
    flag_reasons: List[str] = Field(default_factory=list)
    resolution: Optional[Resolution] = None
    amendments: List[Amendment] = Field(default_factory=list)

    integrity_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    signature: Optional[str] = None
    version: int = Field(default=1, ge=1)

    created_at: datetime
    updated_at: datetime

    def open_anomalies(self) -> List[AnomalyFlag]:
        return [item for item in self.anomalies if not item.resolved]


class VisitFilter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visit_ids: Optional[List[str]] = None
    organization_id: Optional[str] = None
    branch_id: Optional[str] = None
    client_id: Optional[str] = None
    caregiver_id: Optional[str] = None
    statuses: Optional[List[VisitStatus]] = None
    service_date_from: Optional[date] = None
    service_date_to: Optional[date] = None

    def matches(self, record: VisitRecord) -> bool:
        if self.visit_ids is not None and record.visit_id not in self.visit_ids:
            return False
        if self.organization_id is not None and record.organization_id != self.organization_id:
            return False
        if self.branch_id is not None and record.branch_id != self.branch_id:
            return False
        if self.client_id is not None and record.client_id != self.client_id:
            return False
        if self.caregiver_id is not None and record.caregiver_id != self.caregiver_id:
            return False
        if self.statuses is not None and record.status not in self.statuses:
            return False
        if self.service_date_from is not None and record.service_date < self.service_date_from:
            return False
        if self.service_date_to is not None and record.service_date > self.service_date_to:
            return False
        return True


AuditEventType = Literal[
    "VISIT_REGISTERED",
    "CHECK_IN",
    "SERVICE_STARTED",
    "CHECK_OUT",
    "VERIFIED",
    "FLAGGED",
    "RESOLVED",
    "AMENDED",
    "PROJECTION_UPDATED",
    "TRANSITION_REJECTED",
    "CONFLICT_RETRY",
    "INTEGRITY_MISMATCH",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    visit_id: str
    type: AuditEventType
    code: str
    detail: str
    actor_id: Optional[str] = None
    version: Optional[int] = None


class SweepResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visit_id: str
    status: Optional[VisitStatus] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class ChainLink(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int
    status: VisitStatus
    canonical: str
    previous_hash: str
    integrity_hash: str
    signature: Optional[str] = None
    recomputed_hash: str
    hash_valid: bool
    signature_valid: Optional[bool] = None


class VisitAuditTrail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visit_id: str
    links: List[ChainLink] = Field(default_factory=list)
    chain_valid: bool
    head_hash: Optional[str] = None


class AuditExport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generated_at: str
    hash_algorithm: str = "sha256"
    signature_algorithm: Optional[str] = None
    chain_seed: str
    visits: List[VisitAuditTrail] = Field(default_factory=list)
