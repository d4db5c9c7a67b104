"""
Job and queue store.

Every state transition is a single conditional UPDATE so that any number of
worker processes can share one queue:

    pending --(claim)--> processing --(complete)--> completed
    processing --(fail)--> failed --(re-entry while retries remain)--> pending
    processing --(no update past the stuck timeout)--> pending

Nothing is cached in-process; every answer is read from the database.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from citecheck.citations.models import ValidationTier
from citecheck.exceptions import JobAlreadyActiveError, JobNotFoundError, PersistenceError
from citecheck.jobs.db import utcnow
from citecheck.jobs.orm import JobStatus, QueueItemModel, QueueItemStatus, ValidationJobModel

logger = logging.getLogger(__name__)

# Candidates fetched per claim round; losing a race just moves to the next one
CLAIM_CANDIDATES = 10

# Processing items untouched for longer than this are returned to pending
DEFAULT_STUCK_TIMEOUT = timedelta(minutes=10)


class EnsureOutcome(str, Enum):
    """What reconciliation did for one (citation, tier) gap."""
    CREATED = "created"
    REQUEUED = "requeued"
    IN_PROGRESS = "in_progress"
    EXHAUSTED = "exhausted"


class CompletionResult(BaseModel):
    """Outcome of completing a queue item."""
    completed: bool
    tier3_created: bool = False


def _completed_column(tier: ValidationTier):
    if tier == ValidationTier.TIER2:
        return ValidationJobModel.tier2_completed
    return ValidationJobModel.tier3_completed


def _total_column(tier: ValidationTier):
    if tier == ValidationTier.TIER2:
        return ValidationJobModel.tier2_total
    return ValidationJobModel.tier3_total


class QueueStore:
    """
    Persistence for validation jobs and their queue items.

    Usage:
        queue = QueueStore(session_factory, stuck_timeout=timedelta(minutes=10))
        job = queue.create_job(document_id, [("cit_001", 0), ("cit_002", 1)])
        item = queue.claim_next()
        queue.complete_item(item.id, result_payload, escalate=False)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        now: Callable[[], datetime] = utcnow,
        stuck_timeout: timedelta = DEFAULT_STUCK_TIMEOUT
    ):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy session factory
            now: Clock used for updated_at stamps and stuck-item cutoffs
            stuck_timeout: Processing time after which claim_next recovers an item
        """
        self.session_factory = session_factory
        self.now = now
        self.stuck_timeout = stuck_timeout

    # --- Jobs ---

    def create_job(
        self,
        document_id: str,
        citations: Sequence[Tuple[str, int]],
        force_tier3: bool = False
    ) -> ValidationJobModel:
        """
        Create a job and one Tier 2 item per citation in a single transaction.

        If any item insert fails the job row is rolled back with it. The
        one-pending-job rule is enforced by a partial unique index, so of two
        concurrent callers for the same document exactly one succeeds.

        Args:
            document_id: Document to verify
            citations: (citation_id, citation_index) pairs
            force_tier3: Queue Tier 3 for every citation after Tier 2

        Returns:
            The created job

        Raises:
            JobAlreadyActiveError: The document already has a pending job
            PersistenceError: The insert failed
        """
        active = self.find_active_job(document_id)
        if active is not None:
            raise JobAlreadyActiveError(document_id, active.id)

        timestamp = self.now()
        session = self.session_factory()
        try:
            job = ValidationJobModel(
                document_id=document_id,
                status=JobStatus.PENDING,
                tier2_total=len(citations),
                force_tier3=force_tier3,
                diagnostics={},
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(job)
            session.flush()

            session.add_all([
                QueueItemModel(
                    job_id=job.id,
                    citation_id=citation_id,
                    citation_index=index,
                    tier=ValidationTier.TIER2,
                    status=QueueItemStatus.PENDING,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                for citation_id, index in citations
            ])
            session.commit()
        except IntegrityError as e:
            session.rollback()
            active = self.find_active_job(document_id)
            if active is not None:
                raise JobAlreadyActiveError(document_id, active.id) from e
            raise PersistenceError(
                "Failed to create validation job",
                {"document_id": document_id, "error": str(e.orig)},
            ) from e
        finally:
            session.close()

        logger.info("Created job %s for document %s with %d items", job.id, document_id, len(citations))
        return job

    def get_job(self, job_id: str) -> ValidationJobModel:
        """
        Get a job by id.

        Raises:
            JobNotFoundError: Unknown job id
        """
        with self.session_factory() as session:
            job = session.get(ValidationJobModel, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job

    def find_active_job(self, document_id: str) -> Optional[ValidationJobModel]:
        """Get the pending job for a document, if any."""
        with self.session_factory() as session:
            return session.execute(
                select(ValidationJobModel)
                .where(
                    ValidationJobModel.document_id == document_id,
                    ValidationJobModel.status == JobStatus.PENDING,
                )
                .order_by(ValidationJobModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def list_jobs(self, document_id: str) -> List[ValidationJobModel]:
        """All jobs for a document, newest first."""
        with self.session_factory() as session:
            return list(session.execute(
                select(ValidationJobModel)
                .where(ValidationJobModel.document_id == document_id)
                .order_by(ValidationJobModel.created_at.desc())
            ).scalars().all())

    def mark_job_completed(self, job_id: str, diagnostics: Optional[dict] = None) -> bool:
        """Transition a pending job to completed. Returns False if it was not pending."""
        return self._finish_job(job_id, JobStatus.COMPLETED, None, diagnostics or {})

    def mark_job_failed(self, job_id: str, error: str, diagnostics: dict) -> bool:
        """Transition a pending job to failed with diagnostics."""
        return self._finish_job(job_id, JobStatus.FAILED, error, diagnostics)

    def _finish_job(self, job_id: str, status: JobStatus, error: Optional[str], diagnostics: dict) -> bool:
        with self.session_factory() as session:
            outcome = session.execute(
                update(ValidationJobModel)
                .where(ValidationJobModel.id == job_id, ValidationJobModel.status == JobStatus.PENDING)
                .values(status=status, error=error, diagnostics=diagnostics, updated_at=self.now())
            )
            session.commit()
        return outcome.rowcount == 1

    # --- Items ---

    def get_item(self, item_id: str) -> Optional[QueueItemModel]:
        with self.session_factory() as session:
            return session.get(QueueItemModel, item_id)

    def get_items(self, job_id: str, tier: Optional[ValidationTier] = None) -> List[QueueItemModel]:
        """All items of a job in creation order, optionally for one tier."""
        with self.session_factory() as session:
            stmt = select(QueueItemModel).where(QueueItemModel.job_id == job_id)
            if tier is not None:
                stmt = stmt.where(QueueItemModel.tier == tier)
            stmt = stmt.order_by(QueueItemModel.created_at, QueueItemModel.citation_index)
            return list(session.execute(stmt).scalars().all())

    def find_item(self, job_id: str, citation_id: str, tier: ValidationTier) -> Optional[QueueItemModel]:
        with self.session_factory() as session:
            return self._find_item(session, job_id, citation_id, tier)

    @staticmethod
    def _find_item(session: Session, job_id: str, citation_id: str, tier: ValidationTier) -> Optional[QueueItemModel]:
        return session.execute(
            select(QueueItemModel).where(
                QueueItemModel.job_id == job_id,
                QueueItemModel.citation_id == citation_id,
                QueueItemModel.tier == tier,
            )
        ).scalar_one_or_none()

    def claim_item(self, item_id: str) -> bool:
        """
        Atomically move an item from pending to processing.

        Exactly one of any number of concurrent callers gets True.
        """
        with self.session_factory() as session:
            outcome = session.execute(
                update(QueueItemModel)
                .where(QueueItemModel.id == item_id, QueueItemModel.status == QueueItemStatus.PENDING)
                .values(status=QueueItemStatus.PROCESSING, updated_at=self.now())
            )
            session.commit()
        return outcome.rowcount == 1

    def claim_next(self, job_id: Optional[str] = None) -> Optional[QueueItemModel]:
        """
        Claim the oldest pending item.

        Stuck items are recovered first, so an item abandoned by a crashed
        worker is claimable again by the next dequeue.

        Args:
            job_id: Restrict to one job

        Returns:
            The claimed item (status processing), or None if nothing is pending
        """
        self.recover_stuck_items(self.stuck_timeout)
        while True:
            with self.session_factory() as session:
                stmt = select(QueueItemModel.id).where(QueueItemModel.status == QueueItemStatus.PENDING)
                if job_id is not None:
                    stmt = stmt.where(QueueItemModel.job_id == job_id)
                stmt = stmt.order_by(QueueItemModel.created_at, QueueItemModel.citation_index).limit(CLAIM_CANDIDATES)
                candidates = list(session.execute(stmt).scalars().all())

            if not candidates:
                return None

            for item_id in candidates:
                if self.claim_item(item_id):
                    return self.get_item(item_id)
            # Every candidate went to another worker; look again

    def complete_item(self, item_id: str, result: dict, escalate: bool = False) -> CompletionResult:
        """
        Mark a processing item completed and update job progress.

        In one transaction: the item moves processing -> completed, the job's
        completed counter for the tier is incremented, and, for an escalating
        Tier 2 item, the Tier 3 item for the same citation is created unless
        it already exists.

        Args:
            item_id: Item being completed
            result: Panel result payload (JSON)
            escalate: Create the Tier 3 item

        Returns:
            CompletionResult; completed is False if the item was no longer
            processing (recovered and re-claimed elsewhere)
        """
        timestamp = self.now()
        with self.session_factory() as session:
            item = session.get(QueueItemModel, item_id)
            if item is None:
                raise PersistenceError("Queue item not found", {"item_id": item_id})

            outcome = session.execute(
                update(QueueItemModel)
                .where(QueueItemModel.id == item_id, QueueItemModel.status == QueueItemStatus.PROCESSING)
                .values(
                    status=QueueItemStatus.COMPLETED,
                    result=result,
                    error=None,
                    processed_at=timestamp,
                    updated_at=timestamp,
                )
            )
            if outcome.rowcount != 1:
                session.rollback()
                logger.warning("Item %s was no longer processing; completion skipped", item_id)
                return CompletionResult(completed=False)

            completed_column = _completed_column(item.tier)
            values = {completed_column.key: completed_column + 1, "updated_at": timestamp}

            tier3_created = False
            if escalate and item.tier == ValidationTier.TIER2:
                existing = self._find_item(session, item.job_id, item.citation_id, ValidationTier.TIER3)
                if existing is None:
                    session.add(QueueItemModel(
                        job_id=item.job_id,
                        citation_id=item.citation_id,
                        citation_index=item.citation_index,
                        tier=ValidationTier.TIER3,
                        status=QueueItemStatus.PENDING,
                        created_at=timestamp,
                        updated_at=timestamp,
                    ))
                    values["tier3_total"] = ValidationJobModel.tier3_total + 1
                    tier3_created = True

            session.execute(
                update(ValidationJobModel)
                .where(ValidationJobModel.id == item.job_id)
                .values(**values)
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise PersistenceError(
                    "Failed to complete queue item",
                    {"item_id": item_id, "error": str(e.orig)},
                ) from e

        return CompletionResult(completed=True, tier3_created=tier3_created)

    def fail_item(self, item_id: str, error: str) -> Optional[int]:
        """
        Mark a processing item failed and count the attempt.

        Returns:
            The item's retry count after the failure, or None if the item
            was no longer processing
        """
        with self.session_factory() as session:
            outcome = session.execute(
                update(QueueItemModel)
                .where(QueueItemModel.id == item_id, QueueItemModel.status == QueueItemStatus.PROCESSING)
                .values(
                    status=QueueItemStatus.FAILED,
                    error=error[:2000],
                    retry_count=QueueItemModel.retry_count + 1,
                    updated_at=self.now(),
                )
            )
            session.commit()
            if outcome.rowcount != 1:
                return None
            return session.execute(
                select(QueueItemModel.retry_count).where(QueueItemModel.id == item_id)
            ).scalar_one()

    def recover_stuck_items(self, timeout: timedelta) -> int:
        """
        Return processing items with no update for longer than timeout to pending.

        Returns:
            Number of items recovered
        """
        cutoff = self.now() - timeout
        with self.session_factory() as session:
            outcome = session.execute(
                update(QueueItemModel)
                .where(
                    QueueItemModel.status == QueueItemStatus.PROCESSING,
                    QueueItemModel.updated_at < cutoff,
                )
                .values(
                    status=QueueItemStatus.PENDING,
                    error="Recovered after processing timeout",
                    updated_at=self.now(),
                )
            )
            session.commit()
        if outcome.rowcount:
            logger.warning("Recovered %d stuck queue items", outcome.rowcount)
        return outcome.rowcount

    def requeue_failed_items(self, max_retries: int) -> int:
        """
        Return failed items that still have retries left to pending.

        Returns:
            Number of items requeued
        """
        with self.session_factory() as session:
            outcome = session.execute(
                update(QueueItemModel)
                .where(
                    QueueItemModel.status == QueueItemStatus.FAILED,
                    QueueItemModel.retry_count < max_retries,
                )
                .values(status=QueueItemStatus.PENDING, updated_at=self.now())
            )
            session.commit()
        return outcome.rowcount

    def ensure_item(
        self,
        job_id: str,
        citation_id: str,
        citation_index: int,
        tier: ValidationTier,
        max_retries: int
    ) -> EnsureOutcome:
        """
        Make sure a queue item will (re)produce a missing tier result.

        - no item yet: create one (CREATED)
        - pending or processing: nothing to do (IN_PROGRESS)
        - failed with retries left: back to pending (REQUEUED)
        - completed although the result is missing: counted as a failed
          attempt, then requeued while retries remain
        - otherwise: EXHAUSTED

        Args:
            job_id: Owning job
            citation_id: Citation missing a result
            citation_index: Current position of the citation in the document
            tier: Tier whose result is missing
            max_retries: Item-level retry cap

        Returns:
            EnsureOutcome
        """
        timestamp = self.now()
        with self.session_factory() as session:
            item = self._find_item(session, job_id, citation_id, tier)

            if item is None:
                session.add(QueueItemModel(
                    job_id=job_id,
                    citation_id=citation_id,
                    citation_index=citation_index,
                    tier=tier,
                    status=QueueItemStatus.PENDING,
                    created_at=timestamp,
                    updated_at=timestamp,
                ))
                total_column = _total_column(tier)
                session.execute(
                    update(ValidationJobModel)
                    .where(ValidationJobModel.id == job_id)
                    .values({total_column.key: total_column + 1, "updated_at": timestamp})
                )
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return EnsureOutcome.IN_PROGRESS
                return EnsureOutcome.CREATED

            if item.status in (QueueItemStatus.PENDING, QueueItemStatus.PROCESSING):
                return EnsureOutcome.IN_PROGRESS

            retry_count = item.retry_count
            values = {"updated_at": timestamp}
            if item.status == QueueItemStatus.COMPLETED:
                retry_count += 1
                values.update(retry_count=retry_count, error="Result missing after completion")
                completed_column = _completed_column(tier)
                session.execute(
                    update(ValidationJobModel)
                    .where(ValidationJobModel.id == job_id)
                    .values({completed_column.key: completed_column - 1, "updated_at": timestamp})
                )

            exhausted = retry_count >= max_retries
            values["status"] = QueueItemStatus.FAILED if exhausted else QueueItemStatus.PENDING
            outcome = session.execute(
                update(QueueItemModel)
                .where(QueueItemModel.id == item.id, QueueItemModel.status == item.status)
                .values(**values)
            )
            if outcome.rowcount != 1:
                session.rollback()
                return EnsureOutcome.IN_PROGRESS
            session.commit()

        return EnsureOutcome.EXHAUSTED if exhausted else EnsureOutcome.REQUEUED

    # --- Counts ---

    def count_by_status(self, job_id: str) -> Dict[ValidationTier, Counter]:
        """Item counts per tier and status for one job."""
        counts = {tier: Counter() for tier in ValidationTier}
        with self.session_factory() as session:
            rows = session.execute(
                select(QueueItemModel.tier, QueueItemModel.status, func.count())
                .where(QueueItemModel.job_id == job_id)
                .group_by(QueueItemModel.tier, QueueItemModel.status)
            ).all()
        for tier, status, count in rows:
            counts[tier][status] = count
        return counts

    def count_pending(self, job_id: Optional[str] = None) -> int:
        """Pending items, across all jobs unless job_id is given."""
        with self.session_factory() as session:
            stmt = select(func.count()).select_from(QueueItemModel).where(
                QueueItemModel.status == QueueItemStatus.PENDING
            )
            if job_id is not None:
                stmt = stmt.where(QueueItemModel.job_id == job_id)
            return session.execute(stmt).scalar_one()
