"""Repository layer for data access.

Repositories encapsulate database operations and provide a clean interface
for persisting resources and their index outbox entries.
"""

from app.repositories.fhir import FhirRepository
from app.repositories.outbox import OutboxRepository

__all__ = ["FhirRepository", "OutboxRepository"]
