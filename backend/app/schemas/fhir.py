"""Pydantic schemas for the FHIR resource API."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class SearchBundle(BaseModel):
    """Search response envelope.

    Entries are the raw indexed documents, so they reflect index state and
    may lag the resource store.
    """

    resourceType: Literal["Bundle"] = "Bundle"
    type: Literal["searchset"] = "searchset"
    total: int = Field(ge=0, description="Number of matching indexed documents")
    entry: list[dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
