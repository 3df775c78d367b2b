from __future__ import annotations

"""
Great-circle geofence classification for check-in/check-out fixes.

Design intent:
- Haversine distance against a circular tolerance zone.
- A fix whose accuracy circle straddles the boundary is within tolerance but
  asks for manual review.
- Missing fix or missing address coordinates is reported, never guessed.
"""

import math
from typing import Optional

from evv.internal_core.contracts import GeofenceCheck, LocationFix, ServiceAddress

EARTH_RADIUS_METERS = 6_371_008.8
_SIGNIFICANT_EXCESS_METERS = 50.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    # Clamp against float drift for antipodal points.
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


class GeofenceValidator:
    def __init__(self, default_radius_meters: float = 100.0) -> None:
        if default_radius_meters <= 0:
            raise ValueError("default_radius_meters must be > 0")
        self._default_radius_meters = float(default_radius_meters)

    def resolve_radius(self, address: ServiceAddress) -> float:
        return float(address.geofence_radius_meters or self._default_radius_meters)

    def classify(self, fix: Optional[LocationFix], address: ServiceAddress) -> GeofenceCheck:
        radius = self.resolve_radius(address)
        effective_radius = radius + float(address.allowed_variance_meters or 0.0)
        accuracy = fix.accuracy_meters if fix is not None else None

        if fix is None:
            return GeofenceCheck(
                status="unverifiable",
                radius_meters=radius,
                effective_radius_meters=effective_radius,
                reason="No location fix supplied",
            )
        if not address.has_coordinates:
            return GeofenceCheck(
                status="unverifiable",
                radius_meters=radius,
                effective_radius_meters=effective_radius,
                accuracy_meters=accuracy,
                reason="Service address has no geocoded coordinates",
            )

        distance = haversine_meters(
            fix.latitude,
            fix.longitude,
            float(address.latitude),
            float(address.longitude),
        )

        if distance > effective_radius:
            if distance > effective_radius + _SIGNIFICANT_EXCESS_METERS:
                reason = "Location is significantly outside geofence"
            else:
                reason = "Location is slightly outside geofence"
            return GeofenceCheck(
                status="outside",
                distance_meters=distance,
                radius_meters=radius,
                effective_radius_meters=effective_radius,
                accuracy_meters=accuracy,
                reason=reason,
            )

        requires_review = accuracy is not None and distance + accuracy > effective_radius
        return GeofenceCheck(
            status="within",
            distance_meters=distance,
            radius_meters=radius,
            effective_radius_meters=effective_radius,
            accuracy_meters=accuracy,
            requires_manual_review=requires_review,
            reason="GPS accuracy makes verification uncertain" if requires_review else None,
        )
