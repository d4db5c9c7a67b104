"""
Tests for the job and queue store.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import update

from citecheck.citations.models import ValidationTier
from citecheck.exceptions import JobAlreadyActiveError, JobNotFoundError, PersistenceError
from citecheck.jobs import EnsureOutcome, JobStatus, QueueItemStatus, QueueStore
from citecheck.jobs.db import utcnow
from citecheck.jobs.orm import QueueItemModel

CITATIONS = [("cit_001", 0), ("cit_002", 1)]


@pytest.fixture
def job(queue):
    return queue.create_job("doc-1", CITATIONS)


class RacingQueueStore(QueueStore):
    """Holds each thread after its first active-job lookup until both have looked."""

    def __init__(self, session_factory, barrier):
        super().__init__(session_factory)
        self.barrier = barrier
        self.local = threading.local()

    def find_active_job(self, document_id):
        active = super().find_active_job(document_id)
        if not getattr(self.local, "checked", False):
            self.local.checked = True
            self.barrier.wait(timeout=10)
        return active


# ============================================
# Jobs
# ============================================

class TestJobs:
    """Test job creation and lookup."""

    def test_create_job_with_items(self, queue, job):
        items = queue.get_items(job.id)

        assert job.status == JobStatus.PENDING
        assert job.tier2_total == 2
        assert [(i.citation_id, i.tier, i.status) for i in items] == [
            ("cit_001", ValidationTier.TIER2, QueueItemStatus.PENDING),
            ("cit_002", ValidationTier.TIER2, QueueItemStatus.PENDING),
        ]

    def test_one_active_job_per_document(self, queue, job):
        with pytest.raises(JobAlreadyActiveError):
            queue.create_job("doc-1", CITATIONS)

        assert queue.mark_job_completed(job.id)
        assert queue.create_job("doc-1", CITATIONS).id != job.id

    def test_concurrent_create_single_job(self, session_factory):
        """Two callers both see no active job; only one job is created."""
        barrier = threading.Barrier(2)
        queue = RacingQueueStore(session_factory, barrier)
        created, errors = [], []
        lock = threading.Lock()

        def create():
            try:
                job = queue.create_job("doc-1", [("cit_001", 0)])
            except JobAlreadyActiveError as e:
                with lock:
                    errors.append(e)
            else:
                with lock:
                    created.append(job.id)

        threads = [threading.Thread(target=create) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(created) == 1
        assert len(errors) == 1
        assert errors[0].details["job_id"] == created[0]
        assert [j.id for j in queue.list_jobs("doc-1")] == created
        assert len(queue.get_items(created[0])) == 1

    def test_failed_item_insert_rolls_back_job(self, queue):
        with pytest.raises(PersistenceError):
            queue.create_job("doc-1", [("cit_001", 0), ("cit_001", 1)])
        assert queue.list_jobs("doc-1") == []

    def test_finish_only_from_pending(self, queue, job):
        assert queue.mark_job_failed(job.id, "boom", {"unresolved": []})
        assert not queue.mark_job_completed(job.id)

        stored = queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "boom"

    def test_job_not_found(self, queue):
        with pytest.raises(JobNotFoundError):
            queue.get_job("missing")


# ============================================
# Claiming
# ============================================

class TestClaiming:
    """Test atomic claiming."""

    def test_concurrent_claims_single_winner(self, queue, job):
        """Ten workers race for one item; exactly one wins."""
        item_id = queue.get_items(job.id)[0].id
        barrier = threading.Barrier(10)
        results = []
        lock = threading.Lock()

        def claim():
            barrier.wait()
            won = queue.claim_item(item_id)
            with lock:
                results.append(won)

        threads = [threading.Thread(target=claim) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert queue.get_item(item_id).status == QueueItemStatus.PROCESSING

    def test_claim_next_in_order(self, queue, job):
        first = queue.claim_next(job.id)
        second = queue.claim_next(job.id)

        assert (first.citation_id, second.citation_id) == ("cit_001", "cit_002")
        assert first.status == QueueItemStatus.PROCESSING
        assert queue.claim_next(job.id) is None
        assert queue.count_pending() == 0


# ============================================
# Completion and failure
# ============================================

class TestCompletion:
    """Test completion, escalation and failure transitions."""

    def test_complete_updates_progress(self, queue, job):
        item = queue.claim_next(job.id)
        outcome = queue.complete_item(item.id, {"ok": True}, escalate=False)

        assert outcome.completed
        assert not outcome.tier3_created
        assert queue.get_job(job.id).tier2_completed == 1
        assert queue.get_item(item.id).result == {"ok": True}

    def test_escalation_creates_tier3_once(self, queue, job):
        item = queue.claim_next(job.id)
        assert queue.complete_item(item.id, {}, escalate=True).tier3_created

        # The item is recovered and processed again elsewhere
        assert queue.ensure_item(job.id, "cit_001", 0, ValidationTier.TIER2, 3) == EnsureOutcome.REQUEUED
        again = queue.claim_next(job.id)
        assert again.id == item.id
        assert not queue.complete_item(again.id, {}, escalate=True).tier3_created

        tier3 = queue.get_items(job.id, ValidationTier.TIER3)
        assert [i.citation_id for i in tier3] == ["cit_001"]
        assert queue.get_job(job.id).tier3_total == 1

    def test_complete_requires_processing(self, queue, job):
        item = queue.get_items(job.id)[0]
        assert not queue.complete_item(item.id, {}, escalate=False).completed
        assert queue.get_job(job.id).tier2_completed == 0

    def test_retries_then_exhausted(self, queue, job):
        """Failures count up; re-entry stops at the retry cap."""
        item = queue.get_items(job.id)[0]
        for expected in (1, 2, 3):
            assert queue.claim_item(item.id)
            assert queue.fail_item(item.id, "panel error") == expected
            queue.requeue_failed_items(max_retries=3)

        stored = queue.get_item(item.id)
        assert stored.status == QueueItemStatus.FAILED
        assert stored.retry_count == 3
        assert stored.error == "panel error"

    def test_fail_requires_processing(self, queue, job):
        item = queue.get_items(job.id)[0]
        assert queue.fail_item(item.id, "late") is None


# ============================================
# Recovery and reconciliation
# ============================================

class TestRecovery:
    """Test stuck-item recovery and ensure_item."""

    def test_stuck_item_recovered(self, queue, session_factory, job):
        past = QueueStore(session_factory, now=lambda: utcnow() - timedelta(minutes=11))
        stuck, fresh = queue.get_items(job.id)
        assert past.claim_item(stuck.id)
        assert queue.claim_item(fresh.id)

        assert queue.recover_stuck_items(timedelta(minutes=10)) == 1
        assert queue.get_item(stuck.id).status == QueueItemStatus.PENDING
        assert queue.get_item(stuck.id).error == "Recovered after processing timeout"
        assert queue.get_item(fresh.id).status == QueueItemStatus.PROCESSING

    def test_claim_next_recovers_stuck_item(self, queue, session_factory, job):
        """A dequeue alone picks up an item abandoned mid-processing."""
        item = queue.claim_next(job.id)
        with session_factory() as session:
            session.execute(
                update(QueueItemModel)
                .where(QueueItemModel.id == item.id)
                .values(updated_at=utcnow() - timedelta(minutes=30))
            )
            session.commit()

        again = queue.claim_next(job.id)

        assert again is not None
        assert again.id == item.id
        assert again.status == QueueItemStatus.PROCESSING

    def test_claim_next_leaves_recent_processing_item(self, queue, job):
        first = queue.claim_next(job.id)
        second = queue.claim_next(job.id)

        assert second.id != first.id
        assert queue.claim_next(job.id) is None
        assert queue.get_item(first.id).status == QueueItemStatus.PROCESSING

    def test_ensure_creates_missing_item(self, queue, job):
        outcome = queue.ensure_item(job.id, "cit_002", 1, ValidationTier.TIER3, 3)

        assert outcome == EnsureOutcome.CREATED
        assert queue.get_job(job.id).tier3_total == 1
        assert queue.find_item(job.id, "cit_002", ValidationTier.TIER3).status == QueueItemStatus.PENDING

    def test_ensure_leaves_active_item(self, queue, job):
        assert queue.ensure_item(job.id, "cit_001", 0, ValidationTier.TIER2, 3) == EnsureOutcome.IN_PROGRESS

    def test_ensure_requeues_completed_item_missing_result(self, queue, job):
        """A completed item whose result is missing counts as a failed attempt."""
        item = queue.claim_next(job.id)
        queue.complete_item(item.id, {}, escalate=False)

        outcome = queue.ensure_item(job.id, "cit_001", 0, ValidationTier.TIER2, 3)

        stored = queue.get_item(item.id)
        assert outcome == EnsureOutcome.REQUEUED
        assert stored.status == QueueItemStatus.PENDING
        assert stored.retry_count == 1
        assert queue.get_job(job.id).tier2_completed == 0

    def test_ensure_exhausted(self, queue, job):
        item = queue.get_items(job.id)[0]
        for _ in range(3):
            queue.claim_item(item.id)
            queue.fail_item(item.id, "boom")
            queue.requeue_failed_items(max_retries=3)

        assert queue.ensure_item(job.id, "cit_001", 0, ValidationTier.TIER2, 3) == EnsureOutcome.EXHAUSTED

    def test_counts(self, queue, job):
        queue.claim_next(job.id)
        counts = queue.count_by_status(job.id)

        assert counts[ValidationTier.TIER2][QueueItemStatus.PROCESSING] == 1
        assert counts[ValidationTier.TIER2][QueueItemStatus.PENDING] == 1
        assert queue.count_pending(job.id) == 1
