"""
HTTP boundary for the EVV backend.

Design intent:
- Keep handlers thin: parse, call the verification engine, map typed errors.
- Carry visit id, state and operation in every error body.
"""
