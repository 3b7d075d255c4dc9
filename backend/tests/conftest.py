"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- In-memory SQLite resource store (override with DATABASE_TEST_URL)
- An in-memory search index that evaluates the translated queries
- HTTP client for API testing
- Common FHIR test data
"""

import copy
import os
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.dependencies import get_indexing_pipeline, get_search_index
from app.errors import IndexingFailure, SearchError
from app.main import app
from app.repositories.fhir import FhirRepository
from app.services.indexing import IndexingPipeline
from app.services.resource_service import ResourceService
from app.services.search_index import SearchHits


# =============================================================================
# Fake Search Index
# =============================================================================


def _values_at(document: Any, path: list[str]) -> list[Any]:
    """Collect every value at a dotted path, flattening arrays like Elasticsearch."""
    if isinstance(document, list):
        return [v for item in document for v in _values_at(item, path)]
    if not path:
        return [document]
    if not isinstance(document, dict) or path[0] not in document:
        return []
    return _values_at(document[path[0]], path[1:])


def _term_matches(document: dict[str, Any], field: str, value: str) -> bool:
    for candidate in _values_at(document, field.split(".")):
        if isinstance(candidate, bool):
            candidate = str(candidate).lower()
        if candidate == value or str(candidate) == value:
            return True
    return False


class FakeSearchIndex:
    """In-memory SearchIndex understanding match_all and bool.filter.term queries."""

    def __init__(self):
        self.partitions: dict[str, dict[str, dict[str, Any]]] = {}
        self.fail_index = False
        self.fail_query = False
        self.index_calls: list[tuple[str, str]] = []
        self.queries: list[tuple[str, dict[str, Any]]] = []

    async def index_document(self, partition: str, document_id: str, document: dict[str, Any]) -> None:
        self.index_calls.append((partition, document_id))
        if self.fail_index:
            raise IndexingFailure(f"[503] Error indexing document ID={document_id}")
        self.partitions.setdefault(partition, {})[document_id] = copy.deepcopy(document)

    async def query(self, partition: str, query: dict[str, Any]) -> SearchHits:
        self.queries.append((partition, query))
        if self.fail_query:
            raise SearchError("search error: 503")

        documents = list(self.partitions.get(partition, {}).values())
        if "bool" in query:
            for clause in query["bool"]["filter"]:
                ((field, value),) = clause["term"].items()
                documents = [d for d in documents if _term_matches(d, field, value)]
        elif "match_all" not in query:
            raise AssertionError(f"Unsupported query: {query}")
        return SearchHits(documents=copy.deepcopy(documents), total=len(documents))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine with automatic schema management.

    Creates all tables before tests, drops them after.
    Uses DATABASE_TEST_URL env var if set, otherwise an in-memory SQLite
    database shared by every session of the test.
    """
    db_url = os.environ.get("DATABASE_TEST_URL")
    if db_url:
        engine = create_async_engine(db_url, echo=False)
    else:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncSession:
    """Create test database session with automatic rollback."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Search / Service Fixtures
# =============================================================================


@pytest.fixture
def fake_index() -> FakeSearchIndex:
    """Empty in-memory search index."""
    return FakeSearchIndex()


@pytest.fixture
def pipeline(fake_index, session_maker) -> IndexingPipeline:
    """Indexing pipeline writing to the fake index."""
    return IndexingPipeline(fake_index, session_maker)


@pytest.fixture
def service(db_session, fake_index, pipeline) -> ResourceService:
    """ResourceService over the test database and fake index."""
    return ResourceService(FhirRepository(db_session), fake_index, pipeline)


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(session_maker, fake_index, pipeline):
    """Async test client for the FastAPI app.

    Overrides the database session and the process-wide search services so
    API tests run against the test database and the fake index.
    """

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_search_index] = lambda: fake_index
    app.dependency_overrides[get_indexing_pipeline] = lambda: pipeline

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await pipeline.wait_idle()

    # Clean up overrides
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_search_index, None)
    app.dependency_overrides.pop(get_indexing_pipeline, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authentication headers for API requests."""
    return {"Authorization": "Bearer test-token"}


# =============================================================================
# FHIR Test Data
# =============================================================================


@pytest.fixture
def patient_alice() -> dict[str, Any]:
    return {
        "resourceType": "Patient",
        "id": "alice",
        "name": "Alice",
        "city": "Springfield",
        "gender": "female",
    }


@pytest.fixture
def patient_bob() -> dict[str, Any]:
    return {
        "resourceType": "Patient",
        "id": "bob",
        "name": "Bob",
        "city": "Springfield",
        "gender": "male",
    }


@pytest.fixture
def observation() -> dict[str, Any]:
    return {
        "resourceType": "Observation",
        "status": "final",
        "code": {"coding": [{"system": "http://loinc.org", "code": "8867-4"}]},
        "valueQuantity": {"value": 72, "unit": "beats/minute"},
    }
