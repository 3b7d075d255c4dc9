"""FastAPI dependencies for the process-wide search services.

The search index and indexing pipeline are built once in the application
lifespan and kept on ``app.state``. Tests replace them through
``app.dependency_overrides``.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.repositories.fhir import FhirRepository
from app.services.indexing import IndexingPipeline
from app.services.resource_service import ResourceService
from app.services.search_index import SearchIndex


def get_search_index(request: Request) -> SearchIndex:
    return request.app.state.search_index


def get_indexing_pipeline(request: Request) -> IndexingPipeline:
    return request.app.state.indexing_pipeline


def get_resource_service(
    db: AsyncSession = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    pipeline: IndexingPipeline = Depends(get_indexing_pipeline),
) -> ResourceService:
    """Request-scoped ResourceService over the shared index and pipeline."""
    return ResourceService(FhirRepository(db), index, pipeline)
