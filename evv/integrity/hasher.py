from __future__ import annotations

"""
Deterministic content hashing and hash chaining for visit records.

Canonical form: a JSON array of [field_name, value] pairs in HASHABLE_FIELDS
order. Nested objects are emitted with sorted keys, datetimes as UTC
ISO-8601 with microseconds, dates/times as ISO-8601 and enums by value.
The chain hash of version n is SHA-256(canonical(v_n) || hash(v_{n-1})),
with CHAIN_SEED standing in for the predecessor of version 1.
"""

import hashlib
import hmac
import json
import math
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from evv.internal_core.config import CHAIN_SEED
from evv.internal_core.contracts import VisitRecord
from evv.internal_core.errors import IntegrityMismatchError

HASHABLE_FIELDS: tuple[str, ...] = (
    "visit_id",
    "version",
    "organization_id",
    "branch_id",
    "client_id",
    "caregiver_id",
    "caregiver",
    "service_type_code",
    "service_date",
    "scheduled_start",
    "scheduled_end",
    "scheduled_duration_minutes",
    "timezone",
    "address",
    "address_verified",
    "actual_start",
    "actual_end",
    "actual_duration_minutes",
    "check_in_fix",
    "check_out_fix",
    "reconciliation",
    "status",
    "anomalies",
    "flag_reasons",
    "resolution",
    "amendments",
    "created_at",
    "updated_at",
)


def _canonical_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return _canonical_value(value.value)
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite float cannot be canonicalized: {value!r}")
        return value
    if isinstance(value, datetime):
        if value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None:
            return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, BaseModel):
        return {name: _canonical_value(getattr(value, name)) for name in type(value).model_fields}
    if isinstance(value, dict):
        return {str(key): _canonical_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical_value(item) for item in value]
    raise TypeError(f"Unsupported value type for canonicalization: {type(value).__name__}")


def canonicalize(record: VisitRecord) -> str:
    pairs = [[name, _canonical_value(getattr(record, name))] for name in HASHABLE_FIELDS]
    return json.dumps(pairs, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def chain_hash(canonical: str, previous_hash: str) -> str:
    digest = hashlib.sha256()
    digest.update(canonical.encode("utf-8"))
    digest.update(previous_hash.encode("ascii"))
    return digest.hexdigest()


class IntegrityHasher:
    def __init__(self, secret: Optional[str] = None, seed: str = CHAIN_SEED) -> None:
        self._secret = secret.encode("utf-8") if secret else None
        self._seed = seed

    @property
    def seed(self) -> str:
        return self._seed

    @property
    def signing_enabled(self) -> bool:
        return self._secret is not None

    def canonicalize(self, record: VisitRecord) -> str:
        return canonicalize(record)

    def compute_hash(self, record: VisitRecord, previous_hash: Optional[str]) -> str:
        return chain_hash(self.canonicalize(record), previous_hash or self._seed)

    def sign(self, record: VisitRecord, previous_hash: Optional[str]) -> Optional[str]:
        if self._secret is None:
            return None
        payload = self.canonicalize(record).encode("utf-8") + (previous_hash or self._seed).encode("ascii")
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def seal(self, record: VisitRecord, previous_hash: Optional[str]) -> VisitRecord:
        link = previous_hash or self._seed
        return record.model_copy(
            update={
                "previous_hash": link,
                "integrity_hash": self.compute_hash(record, link),
                "signature": self.sign(record, link),
            },
            deep=True,
        )

    def extend_chain(self, record: VisitRecord, predecessor: Optional[VisitRecord]) -> VisitRecord:
        return self.seal(record, predecessor.integrity_hash if predecessor is not None else None)

    def verify(self, record: VisitRecord, expected_hash: Optional[str] = None) -> str:
        expected = expected_hash if expected_hash is not None else record.integrity_hash
        if not expected:
            raise IntegrityMismatchError(
                f"Visit {record.visit_id} v{record.version} carries no integrity hash",
                visit_id=record.visit_id,
                current_state=record.status.value,
                operation="verify_integrity",
            )
        recomputed = self.compute_hash(record, record.previous_hash)
        if not hmac.compare_digest(recomputed, expected):
            raise IntegrityMismatchError(
                f"Integrity hash mismatch for visit {record.visit_id} v{record.version}: "
                f"stored {expected[:12]}..., recomputed {recomputed[:12]}...",
                visit_id=record.visit_id,
                current_state=record.status.value,
                operation="verify_integrity",
            )
        return recomputed

    def verify_signature(self, record: VisitRecord) -> Optional[bool]:
        """Check the keyed signature; None when no secret is configured.

        With a secret configured every version must be signed: the hash alone
        can be recomputed by anyone, so an unsigned version is a mismatch.
        """
        if self._secret is None:
            return None
        if record.signature is None:
            raise IntegrityMismatchError(
                f"Visit {record.visit_id} v{record.version} is unsigned but signing is enabled",
                visit_id=record.visit_id,
                current_state=record.status.value,
                operation="verify_signature",
            )
        expected = self.sign(record, record.previous_hash)
        if not hmac.compare_digest(expected or "", record.signature):
            raise IntegrityMismatchError(
                f"Signature mismatch for visit {record.visit_id} v{record.version}",
                visit_id=record.visit_id,
                current_state=record.status.value,
                operation="verify_signature",
            )
        return True

    def verify_link(self, record: VisitRecord, predecessor: Optional[VisitRecord]) -> None:
        """Check that `record` chains onto `predecessor` (or the seed for version 1)."""
        if predecessor is not None:
            expected = predecessor.integrity_hash
        elif record.version == 1:
            expected = self._seed
        else:
            expected = None
        if not expected or record.previous_hash != expected:
            raise IntegrityMismatchError(
                f"Visit {record.visit_id} v{record.version} does not link to its predecessor",
                visit_id=record.visit_id,
                current_state=record.status.value,
                operation="verify_link",
            )

    def verify_stored(self, record: VisitRecord, predecessor: Optional[VisitRecord]) -> str:
        """Full check for a version read back from storage: hash, chain link and signature."""
        recomputed = self.verify(record)
        self.verify_link(record, predecessor)
        self.verify_signature(record)
        return recomputed
