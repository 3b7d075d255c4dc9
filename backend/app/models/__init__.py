"""SQLAlchemy models."""

from app.models.fhir import FhirResource
from app.models.outbox import IndexOutboxEntry

__all__ = [
    "FhirResource",
    "IndexOutboxEntry",
]
