import threading

from evv.integrations.gateway import InMemorySchedulingGateway, StoreBackedPersistence
from evv.integrity.hasher import IntegrityHasher
from evv.internal_core.config import EVVConfig
from evv.internal_core.contracts import VisitStatus
from evv.internal_core.errors import ConcurrencyConflictError, InvalidTransitionError
from evv.internal_core.keyed_lock import KeyedLock
from evv.internal_core.visit_store import InMemoryVisitStore
from evv.tests.factories import CAREGIVER_ID, at, fix_north, make_engine, visit_data
from evv.verification.engine import VisitVerificationEngine


def _race(calls) -> tuple[list, list[Exception]]:
    barrier = threading.Barrier(len(calls))
    results: list = []
    errors: list[Exception] = []
    guard = threading.Lock()

    def run(call) -> None:
        barrier.wait()
        try:
            value = call()
        except Exception as exc:  # collected for assertions
            with guard:
                errors.append(exc)
            return
        with guard:
            results.append(value)

    threads = [threading.Thread(target=run, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results, errors


def test_concurrent_check_ins_on_one_visit_admit_exactly_one() -> None:
    engine = make_engine()
    engine.register_visit("visit-001")

    results, errors = _race(
        [
            lambda: engine.check_in("visit-001", fix_north(10.0), at(9, 0), CAREGIVER_ID),
            lambda: engine.check_in("visit-001", fix_north(20.0), at(9, 1), "cg-200"),
        ]
    )

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], (ConcurrencyConflictError, InvalidTransitionError))
    current = engine.get_visit("visit-001")
    assert current.status == VisitStatus.CHECKED_IN
    assert current.version == 2
    assert current.actual_start == results[0].actual_start


def test_engines_sharing_a_store_still_admit_one_check_in() -> None:
    # Separate engines model separate processes: no shared keyed lock.
    store = InMemoryVisitStore()
    hasher = IntegrityHasher()
    scheduling = InMemorySchedulingGateway([visit_data()])
    engines = [
        VisitVerificationEngine(
            StoreBackedPersistence(store, hasher),
            hasher=hasher,
            scheduling=scheduling,
            config=EVVConfig(EVV_SAVE_MAX_ATTEMPTS=1),
        )
        for _ in range(2)
    ]
    engines[0].register_visit("visit-001")

    results, errors = _race(
        [lambda engine=engine: engine.check_in("visit-001", fix_north(10.0), at(9, 0), CAREGIVER_ID) for engine in engines]
    )

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], (ConcurrencyConflictError, InvalidTransitionError))
    assert [item.version for item in store.history("visit-001")] == [1, 2]


def test_different_visits_proceed_in_parallel() -> None:
    engine = make_engine([visit_data(f"visit-{index:03d}") for index in range(8)])
    for index in range(8):
        engine.register_visit(f"visit-{index:03d}")

    results, errors = _race(
        [
            lambda visit_id=f"visit-{index:03d}": engine.check_in(visit_id, fix_north(10.0), at(9, 0), CAREGIVER_ID)
            for index in range(8)
        ]
    )

    assert errors == []
    assert sorted(item.visit_id for item in results) == [f"visit-{index:03d}" for index in range(8)]


def test_keyed_lock_separates_keys_and_cleans_up() -> None:
    locks = KeyedLock()
    entered_b = threading.Event()

    def hold_b() -> None:
        with locks.hold("visit-b"):
            entered_b.set()

    with locks.hold("visit-a"):
        worker = threading.Thread(target=hold_b)
        worker.start()
        assert entered_b.wait(timeout=5)
        worker.join(timeout=5)
        assert locks.active_keys() == 1
    assert locks.active_keys() == 0
