"""FHIR Resource repository.

Single entry point for resource persistence. Every write also stages an
index outbox entry in the same transaction, so a stored resource always
leaves a durable trace that it still has to reach the search index.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import StorageError
from app.models.fhir import FhirResource
from app.repositories.outbox import OutboxRepository

logger = logging.getLogger(__name__)


class FhirRepository:
    """Repository for FHIR resource persistence.

    Translates database failures into StorageError so callers never see
    SQLAlchemy exceptions.
    """

    def __init__(
        self,
        db: AsyncSession,
        outbox_grace_seconds: float | None = None,
    ):
        """Initialize repository with database session.

        Args:
            db: Async SQLAlchemy session.
            outbox_grace_seconds: Delay before a new outbox entry becomes due
                for the drain loop. Defaults to settings.
        """
        self.db = db
        self.outbox = OutboxRepository(db)
        self._grace = timedelta(
            seconds=settings.outbox_grace_seconds
            if outbox_grace_seconds is None
            else outbox_grace_seconds
        )

    async def put(self, resource: FhirResource) -> FhirResource:
        """Insert a resource and its outbox entry, then commit.

        Args:
            resource: New FhirResource. Its id must not exist yet.

        Returns:
            The stored FhirResource.

        Raises:
            StorageError: If the insert or commit fails.
        """
        now = datetime.now(timezone.utc)
        self.db.add(resource)
        self.outbox.add(
            resource.resource_type,
            resource.id,
            now=now,
            due_at=now + self._grace,
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if await self._id_taken(resource.id):
                logger.warning("Duplicate resource id %s", resource.id)
                raise StorageError(f"Resource with id '{resource.id}' already exists") from None
            logger.error(
                "Constraint violation storing %s/%s: %s", resource.resource_type, resource.id, e.orig
            )
            raise StorageError("Resource could not be stored (conflict)") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to store %s/%s", resource.resource_type, resource.id, exc_info=True)
            raise StorageError("Failed to store resource") from e
        return resource

    async def _id_taken(self, resource_id: str) -> bool:
        """Whether any stored resource, of any type, already uses this id."""
        try:
            result = await self.db.execute(
                select(FhirResource.id).where(FhirResource.id == resource_id)
            )
        except SQLAlchemyError:
            return False
        return result.scalar_one_or_none() is not None

    async def get(self, resource_type: str, resource_id: str) -> FhirResource | None:
        """Get a live resource by type and id.

        A matching id stored under another resource type is not returned.

        Raises:
            StorageError: If the query fails.
        """
        try:
            result = await self.db.execute(
                select(FhirResource).where(
                    FhirResource.id == resource_id,
                    FhirResource.resource_type == resource_type,
                    FhirResource.deleted_at.is_(None),
                )
            )
        except SQLAlchemyError as e:
            logger.error("Failed to read %s/%s", resource_type, resource_id, exc_info=True)
            raise StorageError("Failed to read resource") from e
        return result.scalar_one_or_none()

    async def list_page(
        self,
        after_id: str | None = None,
        limit: int = 500,
        resource_type: str | None = None,
    ) -> list[FhirResource]:
        """Keyset-paginate live resources ordered by id.

        Args:
            after_id: Return resources with an id greater than this one.
            limit: Page size.
            resource_type: Optional filter by resource type.

        Raises:
            StorageError: If the query fails.
        """
        query = select(FhirResource).where(FhirResource.deleted_at.is_(None))
        if resource_type:
            query = query.where(FhirResource.resource_type == resource_type)
        if after_id is not None:
            query = query.where(FhirResource.id > after_id)
        query = query.order_by(FhirResource.id).limit(limit)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error("Failed to list resources", exc_info=True)
            raise StorageError("Failed to list resources") from e
        return list(result.scalars().all())
