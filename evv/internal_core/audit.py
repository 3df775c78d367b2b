from __future__ import annotations

import datetime as _dt
from typing import Optional, Protocol

from .contracts import AuditEvent, AuditEventType


class AuditSink(Protocol):
    def append_audit_event(self, visit_id: str, event: AuditEvent) -> None: ...


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # Audit details are operator metadata; keep them single-line and short.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "..."
    return detail


def log_event(
    store: AuditSink,
    visit_id: str,
    event_type: AuditEventType,
    code: str,
    detail: str,
    actor_id: Optional[str] = None,
    version: Optional[int] = None,
) -> None:
    event = AuditEvent(
        ts_iso=_ts_iso(),
        visit_id=visit_id,
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
        actor_id=actor_id,
        version=version,
    )
    store.append_audit_event(visit_id, event)
