"""lead activities and stale notices

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 15:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "pipeline_lead",
        sa.Column("activities", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    )

    op.create_table(
        "pipeline_stale_notice",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("context_type", sa.String(length=16), nullable=False),
        sa.Column("context_id", sa.Uuid(), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_pipeline_stale_notice_context",
        "pipeline_stale_notice",
        ["context_type", "context_id", "notified_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_pipeline_stale_notice_context", table_name="pipeline_stale_notice")
    op.drop_table("pipeline_stale_notice")
    op.drop_column("pipeline_lead", "activities")
