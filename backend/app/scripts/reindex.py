"""Re-index stored resources into the search index.

Walks every live resource in PostgreSQL (optionally one resource type) and
writes it to Elasticsearch, settling any pending outbox entries. Use it to
recover documents that never reached the index.

Usage:
    uv run python -m app.scripts.reindex
    uv run python -m app.scripts.reindex --resource-type Patient

The script is idempotent - documents are overwritten under the same id.
"""

import argparse
import asyncio
from datetime import datetime, timezone

from sqlalchemy import text

from app.database import async_session_maker, engine
from app.errors import IndexingFailure
from app.repositories.fhir import FhirRepository
from app.repositories.outbox import OutboxRepository
from app.services.search_index import ElasticsearchIndex, SearchIndex, partition_name

PAGE_SIZE = 500


async def verify_connections(index: ElasticsearchIndex) -> bool:
    """Verify database and search connections are working."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        print("  PostgreSQL: connected")
    except Exception as e:
        print(f"  PostgreSQL: FAILED - {e}")
        return False

    if await index.verify_connectivity():
        print("  Elasticsearch: connected")
    else:
        print("  Elasticsearch: FAILED - could not verify connectivity")
        return False

    return True


async def reindex(
    index: SearchIndex,
    session_maker=async_session_maker,
    resource_type: str | None = None,
    page_size: int = PAGE_SIZE,
) -> dict[str, int]:
    """
    Index every live resource, page by page.

    Args:
        index: Search index to write to.
        session_maker: Session factory for the resource store.
        resource_type: Only re-index this resource type.
        page_size: Resources read per page.

    Returns:
        Dictionary with counts: indexed, failed.
    """
    stats = {"indexed": 0, "failed": 0}
    after_id: str | None = None

    while True:
        async with session_maker() as session:
            store = FhirRepository(session)
            outbox = OutboxRepository(session)
            page = await store.list_page(after_id, page_size, resource_type)
            if not page:
                break

            for resource in page:
                try:
                    await index.index_document(
                        partition_name(resource.resource_type), resource.id, resource.content
                    )
                except IndexingFailure as e:
                    print(f"  {resource.resource_type}/{resource.id}: FAILED - {e.message}")
                    stats["failed"] += 1
                    continue
                await outbox.mark_processed(resource.id, datetime.now(timezone.utc))
                stats["indexed"] += 1

            await session.commit()
            after_id = page[-1].id

    return stats


async def main(resource_type: str | None) -> None:
    index = ElasticsearchIndex()
    try:
        print("Verifying connections...")
        if not await verify_connections(index):
            raise RuntimeError("Connection verification failed")

        print("\nRe-indexing resources...")
        stats = await reindex(index, resource_type=resource_type)
        print(f"\nDone: {stats['indexed']} indexed, {stats['failed']} failed")
    finally:
        await index.close()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Re-index stored FHIR resources")
    parser.add_argument("--resource-type", help="Only re-index this resource type")
    args = parser.parse_args()
    asyncio.run(main(args.resource_type))
