"""
Queue worker.

A worker repeatedly recovers stuck items, re-enters failed items that have
retries left, then claims and processes pending items. Several workers may
run at once against the same database; claiming is atomic.
"""

import logging
import time
from typing import Callable, Optional

from citecheck.jobs.models import WorkerResult
from citecheck.jobs.orchestrator import ValidationOrchestrator
from citecheck.verification.audit import AuditEvent, get_audit_logger, log_audit_event

logger = logging.getLogger(__name__)


class QueueWorker:
    """
    Processes validation queue items in batches.

    Usage:
        worker = QueueWorker(orchestrator, batch_size=5)
        result = worker.process_batch()
        result.has_more  # True while pending items remain
    """

    def __init__(
        self,
        orchestrator: ValidationOrchestrator,
        batch_size: int = 5,
        job_id: Optional[str] = None
    ):
        """
        Initialize the worker.

        Args:
            orchestrator: Orchestrator that processes each item
            batch_size: Default number of items per batch
            job_id: Only process items of this job
        """
        self.orchestrator = orchestrator
        self.queue = orchestrator.queue
        self.batch_size = batch_size
        self.job_id = job_id
        self.audit_logger = get_audit_logger("queue_worker")

    def process_batch(self, max_items: Optional[int] = None) -> WorkerResult:
        """
        Run recovery, then claim and process up to max_items items.

        An item that raises is failed (and retried later while it has
        retries left); it never stops the batch.

        Args:
            max_items: Items to attempt (defaults to batch_size)

        Returns:
            WorkerResult
        """
        max_items = max_items or self.batch_size
        recovered, requeued = self.orchestrator.recover_queue()
        result = WorkerResult(recovered=recovered, requeued=requeued)

        for _ in range(max_items):
            item = self.queue.claim_next(job_id=self.job_id)
            if item is None:
                break

            log_audit_event(self.audit_logger, AuditEvent(
                event_type="queue_item_claimed",
                citation_id=item.citation_id,
                input_data={"job_id": item.job_id, "item_id": item.id, "tier": item.tier.value},
                result="CLAIMED",
            ))
            try:
                completion = self.orchestrator.process_item(item)
            except Exception as e:
                logger.exception("Error processing queue item %s", item.id)
                self.orchestrator.fail_item(item, e)
                result.failed += 1
                continue

            if completion.completed:
                result.processed += 1
                result.item_ids.append(item.id)

        result.remaining = self.queue.count_pending(job_id=self.job_id)
        result.has_more = result.remaining > 0
        logger.info(
            "Batch done: %d processed, %d failed, %d remaining",
            result.processed, result.failed, result.remaining,
        )
        return result

    def run_forever(
        self,
        poll_interval: float = 5.0,
        max_batches: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep
    ) -> int:
        """
        Process batches until stopped.

        Sleeps for poll_interval whenever a batch finds nothing to do.

        Args:
            poll_interval: Seconds to wait when the queue is idle
            max_batches: Stop after this many batches (None: run until interrupted)
            sleep: Sleep function (injectable for tests)

        Returns:
            Total items processed
        """
        total = 0
        batches = 0
        while max_batches is None or batches < max_batches:
            result = self.process_batch()
            batches += 1
            total += result.processed
            if not result.has_more and not result.processed and not result.failed:
                sleep(poll_interval)
        return total
