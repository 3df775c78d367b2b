from __future__ import annotations

"""
Reconcile actual visit timing against the scheduled window.

Time policy: the scheduled date and time-of-day are always combined in the
visit's own IANA timezone. Actual timestamps must be timezone-aware; every
comparison happens between absolute instants. A scheduled end at or before
the scheduled start belongs to the next calendar day (overnight visit).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from evv.internal_core.contracts import Reconciliation
from evv.internal_core.errors import ImplausibleTimingError, InvalidInputError

_UTC_NAMES = {"UTC", "Etc/UTC", "Z"}


def resolve_timezone(name: str) -> tzinfo:
    normalized = (name or "").strip()
    if normalized in _UTC_NAMES:
        return timezone.utc
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidInputError(f"Unknown timezone: {name!r}") from exc


def require_aware(value: Optional[datetime], field_name: str, *, visit_id: Optional[str] = None) -> datetime:
    if value is None:
        raise InvalidInputError(f"{field_name} is required", visit_id=visit_id)
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise InvalidInputError(
            f"{field_name} must be timezone-aware, got naive {value.isoformat()}",
            visit_id=visit_id,
        )
    return value


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


@dataclass(frozen=True)
class TimingOutcome:
    reconciliation: Reconciliation
    anomalies: list[tuple[str, str]] = field(default_factory=list)

    @property
    def within_policy(self) -> bool:
        return self.reconciliation.within_policy


class TimeReconciler:
    def __init__(
        self,
        *,
        max_variance_minutes: float = 15.0,
        max_variance_percent: float = 20.0,
        min_visit_minutes: float = 5.0,
        max_visit_minutes: float = 720.0,
    ) -> None:
        self._max_variance_minutes = float(max_variance_minutes)
        self._max_variance_percent = float(max_variance_percent)
        self._min_visit_minutes = float(min_visit_minutes)
        self._max_visit_minutes = float(max_visit_minutes)

    def scheduled_window(
        self,
        service_date: date,
        scheduled_start: time,
        scheduled_end: time,
        tz_name: str,
    ) -> tuple[datetime, datetime]:
        if scheduled_start == scheduled_end:
            raise InvalidInputError(
                f"Scheduled window is empty: start and end are both {scheduled_start.isoformat()}"
            )
        zone = resolve_timezone(tz_name)
        start_at = datetime.combine(service_date, scheduled_start, tzinfo=zone)
        end_date = service_date if scheduled_end > scheduled_start else service_date + timedelta(days=1)
        end_at = datetime.combine(end_date, scheduled_end, tzinfo=zone)
        # Same-tzinfo arithmetic ignores DST offsets; compare in UTC.
        return start_at.astimezone(timezone.utc), end_at.astimezone(timezone.utc)

    def scheduled_minutes(
        self,
        service_date: date,
        scheduled_start: time,
        scheduled_end: time,
        tz_name: str,
    ) -> float:
        start_at, end_at = self.scheduled_window(service_date, scheduled_start, scheduled_end, tz_name)
        return _minutes(end_at - start_at)

    def actual_minutes(self, actual_start: datetime, actual_end: datetime) -> float:
        start = require_aware(actual_start, "actual_start").astimezone(timezone.utc)
        end = require_aware(actual_end, "actual_end").astimezone(timezone.utc)
        if end < start:
            raise ImplausibleTimingError(
                f"actual_end {end.isoformat()} is before actual_start {start.isoformat()}"
            )
        return _minutes(end - start)

    def reconcile(
        self,
        *,
        service_date: date,
        scheduled_start: time,
        scheduled_end: time,
        tz_name: str,
        actual_start: Optional[datetime],
        actual_end: Optional[datetime],
    ) -> TimingOutcome:
        start_at, end_at = self.scheduled_window(service_date, scheduled_start, scheduled_end, tz_name)
        scheduled = _minutes(end_at - start_at)
        actual = self.actual_minutes(
            require_aware(actual_start, "actual_start"),
            require_aware(actual_end, "actual_end"),
        )

        variance = abs(actual - scheduled)
        variance_percent = variance / scheduled * 100.0
        within_policy = (
            variance <= self._max_variance_minutes
            and variance_percent <= self._max_variance_percent
        )

        anomalies: list[tuple[str, str]] = []
        if not within_policy:
            anomalies.append(
                (
                    "DURATION_VARIANCE",
                    f"Actual {actual:.1f} min vs scheduled {scheduled:.1f} min "
                    f"(variance {variance:.1f} min / {variance_percent:.1f}%, "
                    f"limits {self._max_variance_minutes:g} min / {self._max_variance_percent:g}%)",
                )
            )
        if actual < self._min_visit_minutes:
            anomalies.append(
                ("VISIT_TOO_SHORT", f"Visit lasted {actual:.1f} min, minimum is {self._min_visit_minutes:g} min")
            )
        if actual > self._max_visit_minutes:
            anomalies.append(
                ("VISIT_TOO_LONG", f"Visit lasted {actual:.1f} min, maximum is {self._max_visit_minutes:g} min")
            )

        return TimingOutcome(
            reconciliation=Reconciliation(
                scheduled_start_at=start_at,
                scheduled_end_at=end_at,
                scheduled_minutes=round(scheduled, 2),
                actual_minutes=round(actual, 2),
                variance_minutes=round(variance, 2),
                variance_percent=round(variance_percent, 2),
                within_policy=within_policy,
            ),
            anomalies=anomalies,
        )
