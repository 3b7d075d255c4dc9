"""Pydantic schemas for API request/response models."""

from app.schemas.fhir import HealthResponse, SearchBundle

__all__ = [
    "HealthResponse",
    "SearchBundle",
]
