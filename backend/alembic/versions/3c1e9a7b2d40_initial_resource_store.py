"""initial_resource_store

Revision ID: 3c1e9a7b2d40
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3c1e9a7b2d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create fhir_resources and index_outbox tables."""
    op.create_table(
        "fhir_resources",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("content", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_fhir_resources_resource_type",
        "fhir_resources",
        ["resource_type"],
        unique=False,
    )
    op.create_index(
        "ix_fhir_resources_deleted_at",
        "fhir_resources",
        ["deleted_at"],
        unique=False,
    )
    # Lookups are always by id and type together
    op.create_index(
        "idx_fhir_id_type",
        "fhir_resources",
        ["id", "resource_type"],
        unique=False,
    )

    op.create_table(
        "index_outbox",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_index_outbox_resource_id",
        "index_outbox",
        ["resource_id"],
        unique=False,
    )
    # Drain query: pending entries ordered by due time
    op.create_index(
        "idx_outbox_pending",
        "index_outbox",
        ["processed_at", "next_attempt_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop index_outbox and fhir_resources tables."""
    op.drop_index("idx_outbox_pending", table_name="index_outbox")
    op.drop_index("ix_index_outbox_resource_id", table_name="index_outbox")
    op.drop_table("index_outbox")
    op.drop_index("idx_fhir_id_type", table_name="fhir_resources")
    op.drop_index("ix_fhir_resources_deleted_at", table_name="fhir_resources")
    op.drop_index("ix_fhir_resources_resource_type", table_name="fhir_resources")
    op.drop_table("fhir_resources")
