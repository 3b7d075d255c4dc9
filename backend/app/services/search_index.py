"""Search index service backed by Elasticsearch.

The index is a derived, eventually-consistent view of the resource store.
It is partitioned per resource type: each type gets its own Elasticsearch
index named by the lower-cased resource type.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from app.config import settings
from app.errors import IndexingFailure, SearchError

logger = logging.getLogger(__name__)

# Hard cap on documents returned by one search
MAX_RESULTS = 1000

# Lucene rejects terms over 32766 bytes (4 bytes per character worst case).
# Longer strings stay in _source but cannot be matched.
KEYWORD_IGNORE_ABOVE = 8191

# Strings are mapped as keyword so that term queries are exact equality tests
PARTITION_MAPPINGS: dict[str, Any] = {
    "dynamic_templates": [
        {
            "strings_as_keywords": {
                "match_mapping_type": "string",
                "mapping": {"type": "keyword", "ignore_above": KEYWORD_IGNORE_ABOVE},
            }
        }
    ]
}


def partition_name(resource_type: str) -> str:
    """Index partition for a resource type."""
    return resource_type.lower()


@dataclass
class SearchHits:
    """Result of a search.

    Attributes:
        documents: Raw indexed source documents.
        total: Number of matching documents in the partition.
    """

    documents: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


class SearchIndex(Protocol):
    """Operations the service layer needs from a search backend."""

    async def index_document(
        self, partition: str, document_id: str, document: dict[str, Any]
    ) -> None:
        """Write a document; raises IndexingFailure on error."""
        ...

    async def query(self, partition: str, query: dict[str, Any]) -> SearchHits:
        """Run a query; raises SearchError on error."""
        ...


def create_client() -> AsyncElasticsearch:
    """Build the process-wide Elasticsearch client from settings.

    Retries are disabled so that an unreachable cluster fails fast.
    """
    return AsyncElasticsearch(
        hosts=[settings.elasticsearch_url],
        request_timeout=settings.elasticsearch_request_timeout,
        max_retries=0,
        retry_on_timeout=False,
    )


class ElasticsearchIndex:
    """
    SearchIndex adapter over an AsyncElasticsearch client.

    Partitions are created lazily on first write with a mapping that keeps
    string fields unanalysed. Index writes request an immediate refresh so a
    document is visible to the next search.

    Example:
        index = ElasticsearchIndex()
        await index.index_document("patient", "abc", {"resourceType": "Patient"})
        hits = await index.query("patient", {"match_all": {}})
        await index.close()
    """

    def __init__(
        self,
        client: AsyncElasticsearch | None = None,
        max_results: int = MAX_RESULTS,
    ):
        """
        Initialize ElasticsearchIndex.

        Args:
            client: Optional pre-configured client (for testing).
                   If not provided, creates one from settings.
            max_results: Maximum documents returned per query.
        """
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            self._client = create_client()
            self._owns_client = True
        self._max_results = max_results
        self._known_partitions: set[str] = set()

    @property
    def client(self) -> AsyncElasticsearch:
        return self._client

    async def close(self) -> None:
        """Close the client connection if we own it."""
        if self._owns_client:
            await self._client.close()

    async def verify_connectivity(self) -> bool:
        """Check that the cluster answers."""
        try:
            return bool(await self._client.ping())
        except (ApiError, TransportError) as e:
            logger.warning("Elasticsearch connectivity check failed: %s", e)
            return False

    async def ensure_partition(self, partition: str) -> None:
        """Create the partition's index if this process has not seen it yet.

        An index that already exists (400 resource_already_exists) is fine.
        """
        if partition in self._known_partitions:
            return
        await self._client.options(ignore_status=400).indices.create(
            index=partition,
            mappings=PARTITION_MAPPINGS,
        )
        self._known_partitions.add(partition)

    async def index_document(
        self, partition: str, document_id: str, document: dict[str, Any]
    ) -> None:
        """
        Write a document under ``document_id`` and refresh the partition.

        Raises:
            IndexingFailure: If the cluster is unreachable or rejects the write.
        """
        try:
            await self.ensure_partition(partition)
            response = await self._client.index(
                index=partition,
                id=document_id,
                document=document,
                refresh="true",
            )
        except ApiError as e:
            raise IndexingFailure(
                f"[{e.meta.status}] Error indexing document ID={document_id}"
            ) from e
        except TransportError as e:
            raise IndexingFailure(
                f"Search backend unreachable while indexing ID={document_id}"
            ) from e

        logger.debug("[%s] Indexed document ID=%s", response["result"], document_id)

    async def query(self, partition: str, query: dict[str, Any]) -> SearchHits:
        """
        Run a structured query against one partition.

        A partition that does not exist yet yields no hits.

        Raises:
            SearchError: If the cluster is unreachable or answers with an error.
        """
        try:
            response = await self._client.search(
                index=partition,
                query=query,
                size=self._max_results,
                track_total_hits=True,
                ignore_unavailable=True,
            )
        except ApiError as e:
            logger.error("Search on %s failed with status %s", partition, e.meta.status)
            raise SearchError(f"search error: {e.meta.status}") from e
        except TransportError as e:
            logger.error("Search backend unreachable: %s", e)
            raise SearchError("search backend unreachable") from e

        hits = response["hits"]
        documents = [hit["_source"] for hit in hits.get("hits", [])]
        total = hits.get("total", {}).get("value", len(documents))
        return SearchHits(documents=documents, total=total)
