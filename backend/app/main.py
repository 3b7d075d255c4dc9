"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.database import async_session_maker, engine
from app.logging_config import setup_logging
from app.routes import fhir
from app.schemas.fhir import HealthResponse
from app.services.indexing import IndexingPipeline, OutboxWorker
from app.services.search_index import ElasticsearchIndex

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events for startup/shutdown."""
    setup_logging(settings.log_level)

    # Startup: one search client shared by every request
    search_index = ElasticsearchIndex()
    if await search_index.verify_connectivity():
        logger.info("Connected to Elasticsearch at %s", settings.elasticsearch_url)
    else:
        logger.warning("Elasticsearch not available - documents will be indexed from the outbox later")

    pipeline = IndexingPipeline(search_index, async_session_maker)
    worker = OutboxWorker(search_index, async_session_maker)
    if settings.outbox_worker_enabled:
        worker.start()

    app.state.search_index = search_index
    app.state.indexing_pipeline = pipeline

    yield  # Application runs here

    # Shutdown: unfinished index writes stay in the outbox
    await worker.stop()
    await pipeline.shutdown(timeout=settings.indexing_shutdown_timeout)
    await search_index.close()
    await engine.dispose()


app = FastAPI(
    title="fhirstore",
    description="FHIR R4 resource store with an Elasticsearch search index",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(fhir.router)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="up", service=settings.app_name)
