"""
ORM models for documents, validation jobs and queue items.
"""

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from citecheck.citations.models import ValidationTier
from citecheck.jobs.db import Base, TimestampMixin, UUIDMixin


class JobStatus(str, enum.Enum):
    """
    Validation job states.

    PENDING: items remain to be processed or reconciled
    COMPLETED: every citation carries every required tier result
    FAILED: retries exhausted with known gaps; see diagnostics
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueItemStatus(str, enum.Enum):
    """
    Queue item states.

    pending -> processing -> completed
    processing -> failed -> pending (while retries remain)
    processing -> pending (stuck-item recovery)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentRecord(Base, TimestampMixin):
    """
    A citation document stored as JSON.

    Attributes:
        id: Opaque document id
        payload: CitationDocument serialized with model_dump(mode="json")
        version: Incremented on every write; writers compare-and-set on it
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class ValidationJobModel(Base, UUIDMixin, TimestampMixin):
    """
    One document-verification run.

    Attributes:
        document_id: Document being verified
        status: JobStatus
        tier2_total / tier2_completed: Tier 2 item counts
        tier3_total / tier3_completed: Tier 3 item counts
        force_tier3: Queue Tier 3 for every citation regardless of escalation
        error: Human-readable failure summary
        diagnostics: Unresolved (citation_id, tier) pairs on failure
    """

    __tablename__ = "validation_jobs"
    __table_args__ = (
        # At most one pending job per document; the column stores enum names
        Index(
            "uq_validation_jobs_active_document",
            "document_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    document_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False),
        nullable=False,
        default=JobStatus.PENDING,
    )
    tier2_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier2_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier3_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier3_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    force_tier3: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    diagnostics: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    items: Mapped[List["QueueItemModel"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
    )


class QueueItemModel(Base, UUIDMixin, TimestampMixin):
    """
    One unit of evaluator work: one citation at one tier.

    citation_index is informational only; results are always addressed by
    citation_id.
    """

    __tablename__ = "queue_items"
    __table_args__ = (
        UniqueConstraint("job_id", "citation_id", "tier", name="uq_queue_item_citation_tier"),
        Index("ix_queue_items_status_updated", "status", "updated_at"),
    )

    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("validation_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    citation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    citation_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[ValidationTier] = mapped_column(
        Enum(ValidationTier, native_enum=False),
        nullable=False,
    )
    status: Mapped[QueueItemStatus] = mapped_column(
        Enum(QueueItemStatus, native_enum=False),
        nullable=False,
        default=QueueItemStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    job: Mapped["ValidationJobModel"] = relationship(back_populates="items")
