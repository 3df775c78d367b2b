"""
Time reconciliation boundary for the EVV backend.

Design intent:
- Turn a scheduled date plus time-of-day window into absolute instants.
- Compare actual against scheduled duration under a configurable policy.
- Treat impossible timings as hard errors, never as soft anomalies.
"""
