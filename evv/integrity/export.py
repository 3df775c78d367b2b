from __future__ import annotations

"""
Regulator-facing audit export of visit version histories.

Each link carries the exact canonical string that was hashed, so an external
auditor can recompute SHA-256(canonical || previous_hash) without this code.
"""

import datetime as _dt
import hmac
from typing import Mapping, Sequence

from evv.internal_core.contracts import AuditExport, ChainLink, VisitAuditTrail, VisitRecord
from evv.internal_core.errors import IntegrityMismatchError

from .hasher import IntegrityHasher, chain_hash


def verify_history(hasher: IntegrityHasher, visit_id: str, versions: Sequence[VisitRecord]) -> VisitAuditTrail:
    links: list[ChainLink] = []
    chain_valid = True
    expected_previous = hasher.seed

    for record in versions:
        canonical = hasher.canonicalize(record)
        previous_hash = record.previous_hash or ""
        recomputed = chain_hash(canonical, previous_hash or hasher.seed)
        stored = record.integrity_hash or ""
        hash_valid = bool(stored) and hmac.compare_digest(recomputed, stored)
        linked = previous_hash == expected_previous

        try:
            signature_valid = hasher.verify_signature(record)
        except IntegrityMismatchError:
            signature_valid = False

        if not (hash_valid and linked) or signature_valid is False:
            chain_valid = False

        links.append(
            ChainLink(
                version=record.version,
                status=record.status,
                canonical=canonical,
                previous_hash=previous_hash,
                integrity_hash=stored,
                signature=record.signature,
                recomputed_hash=recomputed,
                hash_valid=hash_valid and linked,
                signature_valid=signature_valid,
            )
        )
        expected_previous = stored

    return VisitAuditTrail(
        visit_id=visit_id,
        links=links,
        chain_valid=chain_valid,
        head_hash=links[-1].integrity_hash if links else None,
    )


def build_audit_export(
    hasher: IntegrityHasher,
    histories: Mapping[str, Sequence[VisitRecord]],
) -> AuditExport:
    """Export every history; raise on the first broken chain."""
    trails: list[VisitAuditTrail] = []
    for visit_id, versions in histories.items():
        trail = verify_history(hasher, visit_id, versions)
        if not trail.chain_valid:
            broken = next(link for link in trail.links if not link.hash_valid or link.signature_valid is False)
            raise IntegrityMismatchError(
                f"Hash chain for visit {visit_id} is broken at version {broken.version}",
                visit_id=visit_id,
                current_state=broken.status.value,
                operation="export_audit",
            )
        trails.append(trail)

    return AuditExport(
        generated_at=_dt.datetime.now(_dt.timezone.utc).isoformat(),
        signature_algorithm="hmac-sha256" if hasher.signing_enabled else None,
        chain_seed=hasher.seed,
        visits=trails,
    )
