"""Index outbox repository.

Durable queue of resources waiting to be written to the search index.
Entries are added in the resource's own transaction by FhirRepository and
drained by the OutboxWorker.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.outbox import IndexOutboxEntry


class OutboxRepository:
    """Data access for IndexOutboxEntry rows.

    Methods never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def add(
        self,
        resource_type: str,
        resource_id: str,
        *,
        now: datetime,
        due_at: datetime,
    ) -> IndexOutboxEntry:
        """Stage a new outbox entry in the current session."""
        entry = IndexOutboxEntry(
            resource_type=resource_type,
            resource_id=resource_id,
            attempts=0,
            next_attempt_at=due_at,
            created_at=now,
        )
        self.db.add(entry)
        return entry

    async def claim_due(
        self,
        now: datetime,
        limit: int,
        max_attempts: int,
    ) -> list[IndexOutboxEntry]:
        """Lock and return unprocessed entries whose retry time has come.

        Rows already locked by another worker are skipped on PostgreSQL.

        Args:
            now: Current time.
            limit: Maximum number of entries to return.
            max_attempts: Entries with this many failed attempts are left alone.

        Returns:
            Entries ordered by due time, oldest first.
        """
        query = (
            select(IndexOutboxEntry)
            .where(
                IndexOutboxEntry.processed_at.is_(None),
                IndexOutboxEntry.next_attempt_at <= now,
                IndexOutboxEntry.attempts < max_attempts,
            )
            .order_by(IndexOutboxEntry.next_attempt_at, IndexOutboxEntry.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def mark_processed(self, resource_id: str, now: datetime) -> int:
        """Mark every pending entry for a resource as processed.

        Returns:
            Number of entries updated.
        """
        result = await self.db.execute(
            update(IndexOutboxEntry)
            .where(
                IndexOutboxEntry.resource_id == resource_id,
                IndexOutboxEntry.processed_at.is_(None),
            )
            .values(processed_at=now)
        )
        return result.rowcount or 0

    def record_failure(
        self,
        entry: IndexOutboxEntry,
        error: str,
        next_attempt_at: datetime,
    ) -> None:
        """Count a failed attempt and push the entry's due time out."""
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = next_attempt_at

    async def get_pending(self) -> list[IndexOutboxEntry]:
        """All unprocessed entries, oldest first."""
        result = await self.db.execute(
            select(IndexOutboxEntry)
            .where(IndexOutboxEntry.processed_at.is_(None))
            .order_by(IndexOutboxEntry.id)
        )
        return list(result.scalars().all())
