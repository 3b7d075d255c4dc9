"""Create, read and search use cases for FHIR resources.

The resource store is authoritative: a create succeeds exactly when the
store write succeeds. Indexing is started afterwards and never awaited, so a
freshly created resource may not be searchable yet.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.errors import NotFoundError, ValidationError
from app.models.fhir import FhirResource
from app.repositories.fhir import FhirRepository
from app.schemas.fhir import SearchBundle
from app.services.indexing import IndexingPipeline
from app.services.query_translator import translate_query
from app.services.search_index import SearchIndex, partition_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceEnvelope:
    """The only two fields of a submitted document that the server reads.

    Attributes:
        resource_type: Value of the document's ``resourceType``.
        id: Value of the document's ``id``, or None if absent, empty or
            not a string.
    """

    resource_type: str
    id: str | None

    @classmethod
    def parse(cls, expected_type: str, body: Any) -> "ResourceEnvelope":
        """Validate a submitted body against the resource type of the path.

        Raises:
            ValidationError: If the body is not an object, or its
                ``resourceType`` is missing, not a string, or differs from
                ``expected_type``.
        """
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        resource_type = body.get("resourceType")
        if not isinstance(resource_type, str) or resource_type != expected_type:
            raise ValidationError("resourceType mismatch or missing")

        resource_id = body.get("id")
        if not isinstance(resource_id, str) or not resource_id:
            resource_id = None
        return cls(resource_type=resource_type, id=resource_id)


class ResourceService:
    """
    Orchestrates the resource store, query translation and search index.

    Example:
        service = ResourceService(FhirRepository(db), index, pipeline)
        created = await service.create("Patient", {"resourceType": "Patient"})
        same = await service.get("Patient", created["id"])
    """

    def __init__(
        self,
        repository: FhirRepository,
        index: SearchIndex,
        pipeline: IndexingPipeline,
    ):
        self._repository = repository
        self._index = index
        self._pipeline = pipeline

    async def create(self, resource_type: str, body: Any) -> dict[str, Any]:
        """
        Store a new resource and start indexing it in the background.

        Args:
            resource_type: Resource type from the request path.
            body: Parsed request body.

        Returns:
            The stored document, with ``id`` filled in when it was missing.

        Raises:
            ValidationError: If the body fails the envelope check.
            StorageError: If the store write fails. Nothing is indexed then.
        """
        envelope = ResourceEnvelope.parse(resource_type, body)

        resource_id = envelope.id
        if resource_id is None:
            resource_id = str(uuid.uuid4())
            body["id"] = resource_id

        now = datetime.now(timezone.utc)
        resource = FhirResource(
            id=resource_id,
            resource_type=resource_type,
            content=body,
            created_at=now,
            updated_at=now,
        )
        await self._repository.put(resource)
        logger.info("Stored %s/%s", resource_type, resource_id)

        self._pipeline.schedule(resource_type, resource_id, body)
        return body

    async def get(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        """
        Return the stored document for ``(resource_type, resource_id)``.

        Raises:
            NotFoundError: If no live resource matches both fields.
            StorageError: If the store read fails.
        """
        resource = await self._repository.get(resource_type, resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")
        return resource.content

    async def search(self, resource_type: str, params: dict[str, str]) -> SearchBundle:
        """
        Search the index partition of ``resource_type``.

        Args:
            resource_type: Resource type from the request path.
            params: Field path to required value; every pair must match.

        Returns:
            Bundle of raw indexed documents.

        Raises:
            SearchError: If the index is unreachable or returns an error.
                A resource type that was never indexed is not an error;
                it yields an empty Bundle.
        """
        query = translate_query(params)
        hits = await self._index.query(partition_name(resource_type), query)
        return SearchBundle(total=hits.total, entry=hits.documents)
