"""
Jobs module for citecheck.

Provides durable validation jobs: the document store, the job/queue store
with atomic claiming and stuck-item recovery, the orchestrator that
processes and reconciles items, and the batch worker.
"""

from citecheck.jobs.db import Base, create_db_engine, create_session_factory, init_db
from citecheck.jobs.orm import (
    DocumentRecord,
    JobStatus,
    QueueItemModel,
    QueueItemStatus,
    ValidationJobModel,
)
from citecheck.jobs.document_store import DocumentStore, WriteOutcome
from citecheck.jobs.queue_store import CompletionResult, EnsureOutcome, QueueStore
from citecheck.jobs.models import JobStatusReport, PipelineRun, TierProgress, UnresolvedCitation, WorkerResult
from citecheck.jobs.orchestrator import ValidationOrchestrator
from citecheck.jobs.worker import QueueWorker
from citecheck.jobs.factory import build_orchestrator, build_panel

__all__ = [
    # Database
    "Base",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    # ORM
    "DocumentRecord",
    "JobStatus",
    "QueueItemModel",
    "QueueItemStatus",
    "ValidationJobModel",
    # Stores
    "DocumentStore",
    "WriteOutcome",
    "QueueStore",
    "CompletionResult",
    "EnsureOutcome",
    # Orchestration
    "ValidationOrchestrator",
    "JobStatusReport",
    "PipelineRun",
    "TierProgress",
    "UnresolvedCitation",
    "QueueWorker",
    "WorkerResult",
    "build_orchestrator",
    "build_panel",
]
