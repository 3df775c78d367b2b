"""
Geofence boundary for the EVV backend.

Design intent:
- Classify a location fix against a service address tolerance zone.
- Keep "unverifiable" distinct from "outside tolerance".
- Stay pure: no I/O, no clock, no shared state.
"""
