"""Initial pipeline run ledger tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pipeline_batches",
        sa.Column("batch_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("file_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("chain_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_task_ids_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column(
            "estimated_processing_seconds",
            sa.Float(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("batch_id"),
    )
    op.create_index("ix_pipeline_batches_status", "pipeline_batches", ["status"], unique=False)

    op.create_table(
        "pipeline_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("batch_id", sa.String(), nullable=False),
        sa.Column("tier_id", sa.String(), nullable=False),
        sa.Column("source_tier_id", sa.String(), nullable=True),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("parent_task_id", sa.String(), nullable=True),
        sa.Column("chunk_id", sa.String(), nullable=True),
        sa.Column("assigned_agent", sa.String(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_duration_ms", sa.Float(), nullable=True),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["batch_id"], ["pipeline_batches.batch_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_pipeline_tasks_status", "pipeline_tasks", ["status"], unique=False)
    op.create_index(
        "idx_pipeline_tasks_batch_tier",
        "pipeline_tasks",
        ["batch_id", "tier_id"],
        unique=False,
    )

    op.create_table(
        "pipeline_task_events",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["pipeline_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index(
        "ix_pipeline_task_events_task_id",
        "pipeline_task_events",
        ["task_id"],
        unique=False,
    )

    op.create_table(
        "source_chunks",
        sa.Column("chunk_id", sa.String(), nullable=False),
        sa.Column("batch_id", sa.String(), nullable=False),
        sa.Column("parent_id", sa.String(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("total_chunks", sa.Integer(), nullable=False),
        sa.Column("start_offset", sa.Integer(), nullable=False),
        sa.Column("end_offset", sa.Integer(), nullable=False),
        sa.Column("checksum", sa.String(), nullable=False),
        sa.Column("complexity", sa.Float(), nullable=False),
        sa.Column("strategy", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("warnings_json", sa.Text(), nullable=False, server_default="[]"),
        sa.ForeignKeyConstraint(["batch_id"], ["pipeline_batches.batch_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("chunk_id"),
    )
    op.create_index(
        "idx_source_chunks_parent_index",
        "source_chunks",
        ["parent_id", "chunk_index"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_source_chunks_parent_index", table_name="source_chunks")
    op.drop_table("source_chunks")
    op.drop_index("ix_pipeline_task_events_task_id", table_name="pipeline_task_events")
    op.drop_table("pipeline_task_events")
    op.drop_index("idx_pipeline_tasks_batch_tier", table_name="pipeline_tasks")
    op.drop_index("ix_pipeline_tasks_status", table_name="pipeline_tasks")
    op.drop_table("pipeline_tasks")
    op.drop_index("ix_pipeline_batches_status", table_name="pipeline_batches")
    op.drop_table("pipeline_batches")
