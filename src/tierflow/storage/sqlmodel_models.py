"""SQLModel ORM tables for pipeline run persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class PipelineBatch(SQLModel, table=True):
    __tablename__ = "pipeline_batches"  # type: ignore[bad-override]

    batch_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    file_count: int = 0
    chain_count: int = 0
    failed_task_ids_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    estimated_processing_seconds: float = 0.0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class PipelineTask(SQLModel, table=True):
    __tablename__ = "pipeline_tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_pipeline_tasks_batch_tier", "batch_id", "tier_id"),)

    task_id: str = Field(primary_key=True)
    batch_id: str = Field(
        sa_column=Column(
            ForeignKey("pipeline_batches.batch_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    tier_id: str
    source_tier_id: str | None = None
    task_type: str
    status: str = Field(index=True)
    parent_task_id: str | None = None
    chunk_id: str | None = None
    assigned_agent: str | None = None
    retry_count: int = 0
    max_retries: int = 0
    expected_duration_ms: float | None = None
    duration_ms: float | None = None
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class PipelineTaskEvent(SQLModel, table=True):
    __tablename__ = "pipeline_task_events"  # type: ignore[bad-override]

    event_id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("pipeline_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str
    details_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SourceChunk(SQLModel, table=True):
    __tablename__ = "source_chunks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_source_chunks_parent_index", "parent_id", "chunk_index"),)

    chunk_id: str = Field(primary_key=True)
    batch_id: str = Field(
        sa_column=Column(
            ForeignKey("pipeline_batches.batch_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    parent_id: str
    chunk_index: int
    total_chunks: int
    start_offset: int
    end_offset: int
    checksum: str
    complexity: float
    strategy: str
    status: str
    warnings_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
