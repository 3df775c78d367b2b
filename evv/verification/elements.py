"""Federal EVV data-element completeness (21st Century Cures Act, section 12006)."""

from __future__ import annotations

from evv.internal_core.contracts import VisitRecord

EVV_ELEMENTS: tuple[str, ...] = (
    "SERVICE_TYPE",
    "CLIENT",
    "CAREGIVER",
    "SERVICE_DATE",
    "SERVICE_LOCATION",
    "SERVICE_TIME",
)


def _has_text(value: object) -> bool:
    return bool(str(value or "").strip())


def missing_evv_elements(record: VisitRecord) -> list[str]:
    """Elements a finalized visit cannot be verified without, in EVV_ELEMENTS order."""
    present = {
        "SERVICE_TYPE": _has_text(record.service_type_code),
        "CLIENT": _has_text(record.client_id),
        "CAREGIVER": _has_text(record.caregiver_id),
        "SERVICE_DATE": record.service_date is not None,
        "SERVICE_LOCATION": record.check_in_fix is not None and record.check_in_fix.fix is not None,
        "SERVICE_TIME": record.actual_start is not None and record.actual_end is not None,
    }
    return [name for name in EVV_ELEMENTS if not present[name]]
