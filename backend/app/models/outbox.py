"""SQLAlchemy model for the search index outbox."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class IndexOutboxEntry(Base):
    """A resource that still has to reach the search index.

    Written in the same transaction as the resource. ``processed_at`` is set
    once the document has been indexed (or the resource no longer exists).
    """

    __tablename__ = "index_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Retry bookkeeping
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Drain query: unprocessed entries ordered by due time
        Index("idx_outbox_pending", "processed_at", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<IndexOutboxEntry(id={self.id}, resource={self.resource_type}/{self.resource_id}, "
            f"attempts={self.attempts})>"
        )
