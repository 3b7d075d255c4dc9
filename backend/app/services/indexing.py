"""Propagation of stored resources into the search index.

Two paths write to the index:

- IndexingPipeline: one best-effort attempt right after a resource is
  stored, run as a fire-and-forget asyncio task. Failures are logged and
  swallowed; the create request never waits for or sees the outcome.
- OutboxWorker: a background loop that drains the index outbox, retrying
  resources whose immediate attempt failed (or never ran) with exponential
  backoff.

Both write the same document under the same id, so overlap is harmless.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.errors import IndexingFailure, StorageError
from app.models.outbox import IndexOutboxEntry
from app.repositories.fhir import FhirRepository
from app.repositories.outbox import OutboxRepository
from app.services.search_index import SearchIndex, partition_name

logger = logging.getLogger(__name__)


def backoff_delay(attempts: int, base: float, cap: float) -> float:
    """Seconds to wait before the next attempt after ``attempts`` failures."""
    return min(base * (2 ** attempts), cap)


class IndexingPipeline:
    """
    Best-effort, non-blocking writer from the resource store to the index.

    Example:
        pipeline = IndexingPipeline(index, async_session_maker)
        pipeline.schedule("Patient", "abc", {"resourceType": "Patient", "id": "abc"})
        ...
        await pipeline.shutdown(timeout=5.0)
    """

    def __init__(
        self,
        index: SearchIndex,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ):
        """
        Initialize IndexingPipeline.

        Args:
            index: Search index to write to.
            session_maker: Session factory used to settle outbox entries after
                a successful write. Without it the outbox is left to the worker.
        """
        self._index = index
        self._session_maker = session_maker
        # Strong references so running tasks are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of scheduled index writes that have not finished."""
        return len(self._tasks)

    async def index(self, resource_type: str, resource_id: str, document: dict[str, Any]) -> bool:
        """Write one document to its partition. Never raises.

        Returns:
            True if the document was indexed, False if the attempt failed.
        """
        try:
            await self._index.index_document(partition_name(resource_type), resource_id, document)
        except IndexingFailure as e:
            logger.warning("Indexing failed for %s/%s: %s", resource_type, resource_id, e.message)
            return False
        except Exception:
            logger.exception("Unexpected error indexing %s/%s", resource_type, resource_id)
            return False

        await self._settle_outbox(resource_id)
        return True

    def schedule(
        self, resource_type: str, resource_id: str, document: dict[str, Any]
    ) -> asyncio.Task:
        """Start an index write in the background and return immediately."""
        task = asyncio.create_task(self.index(resource_type, resource_id, document))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float) -> None:
        """Give in-flight writes ``timeout`` seconds, then cancel the rest.

        Cancelled writes stay in the outbox for the next drain.
        """
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.info("Dropped %d in-flight index writes on shutdown", len(still_running))

    async def _settle_outbox(self, resource_id: str) -> None:
        if self._session_maker is None:
            return
        try:
            async with self._session_maker() as session:
                await OutboxRepository(session).mark_processed(
                    resource_id, datetime.now(timezone.utc)
                )
                await session.commit()
        except SQLAlchemyError as e:
            # The worker will index it again and settle the entry then
            logger.warning("Could not settle outbox entry for %s: %s", resource_id, e)


class OutboxWorker:
    """
    Background loop that drains the index outbox with retry and backoff.

    Each pass claims due entries, re-reads the resource from the store and
    writes it to the index. Failed entries are rescheduled with exponential
    backoff until ``max_attempts`` is reached; after that they wait for a
    manual re-index (``python -m app.scripts.reindex``).
    """

    def __init__(
        self,
        index: SearchIndex,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        poll_interval: float = settings.outbox_poll_interval,
        batch_size: int = settings.outbox_batch_size,
        max_attempts: int = settings.outbox_max_attempts,
        backoff_base: float = settings.outbox_backoff_base,
        backoff_max: float = settings.outbox_backoff_max,
    ):
        self._index = index
        self._session_maker = session_maker
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the drain loop on the running event loop."""
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Index outbox worker started")

    async def stop(self) -> None:
        """Signal the loop to exit and wait for it."""
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=self._poll_interval + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("Index outbox worker stopped")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.drain_once()
            except (SQLAlchemyError, StorageError):
                logger.error("Outbox drain pass failed", exc_info=True)
            except Exception:
                logger.exception("Unexpected error in outbox drain pass")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def drain_once(self, now: datetime | None = None) -> int:
        """Process one batch of due outbox entries.

        Args:
            now: Current time (defaults to the wall clock; tests pass a value).

        Returns:
            Number of documents successfully indexed.
        """
        now = now or datetime.now(timezone.utc)
        indexed = 0

        async with self._session_maker() as session:
            outbox = OutboxRepository(session)
            store = FhirRepository(session)

            entries = await outbox.claim_due(now, self._batch_size, self._max_attempts)
            for entry in entries:
                resource = await store.get(entry.resource_type, entry.resource_id)
                if resource is None:
                    # Nothing left to index
                    entry.processed_at = now
                    continue

                try:
                    await self._index.index_document(
                        partition_name(resource.resource_type), resource.id, resource.content
                    )
                except IndexingFailure as e:
                    self._record_failure(outbox, entry, e.message, now)
                    continue
                except Exception as e:
                    logger.exception(
                        "Unexpected error indexing %s/%s", entry.resource_type, entry.resource_id
                    )
                    self._record_failure(outbox, entry, repr(e), now)
                    continue

                entry.processed_at = now
                indexed += 1

            await session.commit()

        if entries:
            logger.info("Outbox pass: %d/%d entries indexed", indexed, len(entries))
        return indexed

    def _record_failure(
        self,
        outbox: OutboxRepository,
        entry: IndexOutboxEntry,
        error: str,
        now: datetime,
    ) -> None:
        delay = backoff_delay(entry.attempts, self._backoff_base, self._backoff_max)
        outbox.record_failure(entry, error, now + timedelta(seconds=delay))
        logger.warning(
            "Outbox retry %d for %s/%s failed: %s",
            entry.attempts,
            entry.resource_type,
            entry.resource_id,
            error,
        )
        if entry.attempts >= self._max_attempts:
            logger.error(
                "Giving up on indexing %s/%s after %d attempts",
                entry.resource_type,
                entry.resource_id,
                entry.attempts,
            )
