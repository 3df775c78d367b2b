"""
EVV integrity backend package.

Design intent:
- Prove caregiver presence for scheduled home-care visits.
- Keep every committed visit version on a tamper-evident hash chain.
- Keep domain modules (geo/timing/integrity/verification) independent from the HTTP surface.
"""
