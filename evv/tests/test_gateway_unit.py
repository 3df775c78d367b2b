import pytest

from evv.integrations.gateway import (
    InMemoryCaregiverRegistry,
    InMemorySchedulingGateway,
    StoreBackedPersistence,
)
from evv.integrity.hasher import IntegrityHasher
from evv.internal_core.contracts import CaregiverData, VisitStatus
from evv.internal_core.errors import (
    CollaboratorUnavailableError,
    ConcurrencyConflictError,
    IntegrityMismatchError,
    InvalidTransitionError,
    VisitNotFoundError,
)
from evv.internal_core.visit_store import InMemoryVisitStore
from evv.tests.factories import at, visit_data, visit_record
from evv.verification.state_machine import NEXT_STATUSES, OPERATION_SOURCES, can_transition, require_operation


def _persistence() -> StoreBackedPersistence:
    persistence = StoreBackedPersistence(InMemoryVisitStore(), IntegrityHasher())
    persistence.create(visit_record())
    return persistence


def test_create_seals_version_one_on_chain_seed() -> None:
    persistence = _persistence()
    record = persistence.load("visit-001")
    assert record.version == 1
    assert record.previous_hash == IntegrityHasher().seed
    IntegrityHasher().verify(record)


def test_status_projection_follows_state_machine() -> None:
    persistence = _persistence()
    first = persistence.load("visit-001")

    updated = persistence.update_visit_status("visit-001", VisitStatus.CHECKED_IN, expected_version=1)
    assert updated.version == 2
    assert updated.previous_hash == first.integrity_hash

    with pytest.raises(InvalidTransitionError) as exc_info:
        persistence.update_visit_status("visit-001", VisitStatus.CLOSED, expected_version=2)
    assert exc_info.value.operation == "update_visit_status:CLOSED"
    with pytest.raises(ConcurrencyConflictError):
        persistence.update_visit_status("visit-001", VisitStatus.IN_PROGRESS, expected_version=1)
    assert persistence.load("visit-001").version == 2


def test_projections_reject_finalized_records() -> None:
    persistence = StoreBackedPersistence(InMemoryVisitStore(), IntegrityHasher())
    persistence.create(visit_record(status=VisitStatus.VERIFIED))
    with pytest.raises(InvalidTransitionError):
        persistence.update_visit_status("visit-001", VisitStatus.FLAGGED, expected_version=1)
    with pytest.raises(InvalidTransitionError):
        persistence.update_visit_timing("visit-001", 1, actual_start=at(9, 0))


def test_timing_projection_recomputes_duration() -> None:
    persistence = _persistence()
    persistence.update_visit_timing("visit-001", 1, actual_start=at(9, 0))
    record = persistence.update_visit_timing("visit-001", 2, actual_end=at(10, 45))
    assert record.actual_start == at(9, 0)
    assert record.actual_duration_minutes == 105.0
    assert [item.version for item in persistence.history("visit-001")] == [1, 2, 3]


def test_projections_are_audited() -> None:
    persistence = _persistence()
    persistence.update_visit_status("visit-001", VisitStatus.CHECKED_IN, expected_version=1, actor_id="scheduler")
    persistence.update_visit_timing("visit-001", 2, actual_start=at(9, 0))

    events = persistence.audit_events("visit-001")
    assert [event.type for event in events] == ["PROJECTION_UPDATED", "PROJECTION_UPDATED"]
    assert [event.code for event in events] == ["STATUS_CHECKED_IN", "TIMING"]
    assert events[0].actor_id == "scheduler"
    assert events[1].version == 3


def test_projections_refuse_tampered_record() -> None:
    persistence = _persistence()
    entry = persistence.store._visits["visit-001"]
    entry["current"] = entry["current"].model_copy(update={"client_id": "someone-else"})

    with pytest.raises(IntegrityMismatchError):
        persistence.update_visit_timing("visit-001", 1, actual_start=at(9, 0))
    with pytest.raises(IntegrityMismatchError):
        persistence.update_visit_status("visit-001", VisitStatus.CHECKED_IN, expected_version=1)
    assert persistence.load("visit-001").version == 1
    assert persistence.audit_events("visit-001") == []


def test_projections_refuse_record_with_stripped_hash() -> None:
    persistence = _persistence()
    entry = persistence.store._visits["visit-001"]
    entry["current"] = entry["current"].model_copy(update={"integrity_hash": None})

    with pytest.raises(IntegrityMismatchError):
        persistence.update_visit_status("visit-001", VisitStatus.CHECKED_IN, expected_version=1)
    assert persistence.load("visit-001").version == 1


def test_scheduling_gateway_lookup_and_outage() -> None:
    gateway = InMemorySchedulingGateway()
    gateway.add_visit(visit_data("visit-010"))
    assert gateway.get_visit_data("visit-010").visit_id == "visit-010"
    with pytest.raises(VisitNotFoundError):
        gateway.get_visit_data("visit-011")
    gateway.available = False
    with pytest.raises(CollaboratorUnavailableError):
        gateway.get_visit_data("visit-010")


def test_caregiver_registry_returns_none_for_unknown_ids() -> None:
    registry = InMemoryCaregiverRegistry([CaregiverData(caregiver_id="cg-1", name="Sam", employee_number="E-1")])
    assert registry.get_caregiver_data("cg-1").name == "Sam"
    assert registry.get_caregiver_data("cg-2") is None


def test_state_machine_tables_agree() -> None:
    assert can_transition(VisitStatus.SCHEDULED, VisitStatus.CHECKED_IN)
    assert not can_transition(VisitStatus.SCHEDULED, VisitStatus.CHECKED_OUT)
    assert not can_transition(VisitStatus.VERIFIED, VisitStatus.FLAGGED)
    assert NEXT_STATUSES[VisitStatus.CLOSED] == frozenset()
    for operation, sources in OPERATION_SOURCES.items():
        for status in VisitStatus:
            if status in sources:
                require_operation("visit-001", status, operation)
            else:
                with pytest.raises(InvalidTransitionError):
                    require_operation("visit-001", status, operation)
    with pytest.raises(InvalidTransitionError):
        require_operation("visit-001", VisitStatus.SCHEDULED, "delete")
