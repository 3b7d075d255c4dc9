"""SQLAlchemy model for stored FHIR resources."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# JSONB on PostgreSQL, plain JSON on other dialects (SQLite in tests)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class FhirResource(Base):
    """FHIR resource stored as an opaque JSON document.

    The id is the FHIR logical id and is unique across all resource types.
    ``content`` holds the submitted document, including its own copy of
    ``id`` and ``resourceType``.
    """

    __tablename__ = "fhir_resources"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    content: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Reserved soft-delete marker; nothing sets it yet
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    __table_args__ = (
        Index("idx_fhir_id_type", "id", "resource_type"),
    )

    def __repr__(self) -> str:
        return f"<FhirResource(id={self.id}, type={self.resource_type})>"
