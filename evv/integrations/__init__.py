"""
Integration boundary for the EVV backend.

Design intent:
- Describe scheduling, caregiver and persistence collaborators as small ABCs.
- Ship in-memory reference implementations for tests and local runs.
- Surface collaborator outages as retryable errors; never hide them.
"""

from .gateway import (
    CaregiverRegistry,
    InMemoryCaregiverRegistry,
    InMemorySchedulingGateway,
    PersistenceGateway,
    SchedulingGateway,
    StoreBackedPersistence,
)

__all__ = [
    "CaregiverRegistry",
    "InMemoryCaregiverRegistry",
    "InMemorySchedulingGateway",
    "PersistenceGateway",
    "SchedulingGateway",
    "StoreBackedPersistence",
]
