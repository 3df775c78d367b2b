import hashlib
import json
from datetime import timedelta, timezone

import pytest

from evv.integrity.hasher import HASHABLE_FIELDS, IntegrityHasher, canonicalize, chain_hash
from evv.internal_core.config import CHAIN_SEED
from evv.internal_core.contracts import VisitStatus
from evv.internal_core.errors import IntegrityMismatchError
from evv.tests.factories import at, visit_record


def test_canonical_form_is_ordered_field_pairs() -> None:
    canonical = canonicalize(visit_record())
    pairs = json.loads(canonical)
    assert [name for name, _ in pairs] == list(HASHABLE_FIELDS)
    assert "integrity_hash" not in HASHABLE_FIELDS
    assert ", " not in canonical and '": ' not in canonical
    assert dict(pairs)["status"] == "SCHEDULED"


def test_canonical_form_normalizes_datetimes_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    local = visit_record(created_at=at(8, 0).astimezone(plus_two), updated_at=at(8, 0).astimezone(plus_two))
    assert canonicalize(local) == canonicalize(visit_record())
    assert dict(json.loads(canonicalize(local)))["created_at"] == "2026-10-19T08:00:00.000000+00:00"


def test_hash_is_sha256_of_canonical_and_previous_hash() -> None:
    record = visit_record()
    expected = hashlib.sha256((canonicalize(record) + CHAIN_SEED).encode("utf-8")).hexdigest()
    assert IntegrityHasher().compute_hash(record, None) == expected
    assert chain_hash(canonicalize(record), CHAIN_SEED) == expected


def test_seal_then_verify_round_trip_hash_only() -> None:
    hasher = IntegrityHasher()
    sealed = hasher.seal(visit_record(), None)
    assert sealed.previous_hash == CHAIN_SEED
    assert sealed.signature is None
    assert hasher.verify(sealed) == sealed.integrity_hash
    assert hasher.verify_signature(sealed) is None


def test_tampered_field_fails_verification() -> None:
    hasher = IntegrityHasher()
    sealed = hasher.seal(visit_record(status=VisitStatus.VERIFIED), None)
    tampered = sealed.model_copy(update={"actual_duration_minutes": 240.0})
    with pytest.raises(IntegrityMismatchError) as exc_info:
        hasher.verify(tampered)
    assert exc_info.value.visit_id == "visit-001"
    assert exc_info.value.current_state == "VERIFIED"


def test_verify_against_explicit_expected_hash() -> None:
    hasher = IntegrityHasher()
    sealed = hasher.seal(visit_record(), None)
    hasher.verify(sealed, expected_hash=sealed.integrity_hash)
    with pytest.raises(IntegrityMismatchError):
        hasher.verify(sealed, expected_hash="f" * 64)


def test_record_without_hash_fails_verification() -> None:
    with pytest.raises(IntegrityMismatchError):
        IntegrityHasher().verify(visit_record())


def test_extend_chain_links_to_predecessor() -> None:
    hasher = IntegrityHasher()
    v1 = hasher.seal(visit_record(), None)
    v2 = hasher.extend_chain(visit_record(version=2, status=VisitStatus.CHECKED_IN), v1)
    other = hasher.seal(visit_record(version=2, status=VisitStatus.CHECKED_IN), "a" * 64)
    assert v2.previous_hash == v1.integrity_hash
    assert v2.integrity_hash != other.integrity_hash
    hasher.verify(v2)


def test_keyed_signature_round_trip_and_wrong_secret() -> None:
    signer = IntegrityHasher(secret="agency-secret")
    sealed = signer.seal(visit_record(), None)
    assert signer.signing_enabled is True
    assert sealed.signature is not None and len(sealed.signature) == 64
    assert signer.verify_signature(sealed) is True

    with pytest.raises(IntegrityMismatchError):
        IntegrityHasher(secret="other-secret").verify_signature(sealed)
    # The hash-only path still accepts the keyed record.
    assert IntegrityHasher().verify(sealed) == sealed.integrity_hash


def test_signature_does_not_change_hash() -> None:
    record = visit_record()
    assert IntegrityHasher(secret="k").seal(record, None).integrity_hash == IntegrityHasher().seal(record, None).integrity_hash


def test_unsigned_record_fails_when_signing_enabled() -> None:
    unsigned = IntegrityHasher().seal(visit_record(), None)
    assert IntegrityHasher().verify_signature(unsigned) is None
    with pytest.raises(IntegrityMismatchError) as exc_info:
        IntegrityHasher(secret="agency-secret").verify_signature(unsigned)
    assert exc_info.value.operation == "verify_signature"


def test_verify_link_requires_predecessor_hash_or_seed() -> None:
    hasher = IntegrityHasher()
    v1 = hasher.seal(visit_record(), None)
    v2 = hasher.extend_chain(visit_record(version=2, status=VisitStatus.CHECKED_IN), v1)
    hasher.verify_link(v1, None)
    hasher.verify_link(v2, v1)

    restarted = hasher.seal(visit_record(version=2, status=VisitStatus.CHECKED_IN), None)
    hasher.verify(restarted)
    with pytest.raises(IntegrityMismatchError):
        hasher.verify_link(restarted, v1)
    with pytest.raises(IntegrityMismatchError):
        hasher.verify_link(v2, None)


def test_verify_stored_checks_hash_link_and_signature() -> None:
    signer = IntegrityHasher(secret="agency-secret")
    v1 = signer.seal(visit_record(), None)
    v2 = signer.extend_chain(visit_record(version=2, status=VisitStatus.CHECKED_IN), v1)
    assert signer.verify_stored(v2, v1) == v2.integrity_hash

    with pytest.raises(IntegrityMismatchError):
        signer.verify_stored(v2.model_copy(update={"integrity_hash": None}), v1)
    with pytest.raises(IntegrityMismatchError):
        signer.verify_stored(v2.model_copy(update={"signature": None}), v1)
