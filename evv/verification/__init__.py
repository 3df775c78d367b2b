"""
Visit verification boundary for the EVV backend.

Design intent:
- Own the visit lifecycle state machine; nothing else mutates visit records.
- Record GPS and timing problems as flags for human review instead of blocking care.
- Serialize work per visit id while leaving different visits fully parallel.
"""
