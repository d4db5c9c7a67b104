"""
Validation job orchestrator.

Ties the document store, the queue store and the consensus panel together:

1. identify_document: pattern matching, normalization and Tier 1 checks
2. start_job: one Tier 2 queue item per citation
3. process_item: context -> panel -> idempotent write -> read-back check
4. check_job_completion: reconciliation over the document before a job may
   complete; gaps are requeued while retries remain, otherwise the job fails
   with the unresolved citations listed. Token usage and cost of the job's
   panel calls are recorded in its diagnostics either way.

run_full_pipeline chains steps 1 and 2 for a document in one call.

All state lives in the stores, so any number of orchestrators (one per
worker process) can run against the same database.
"""

import time
from datetime import timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from citecheck.citations.comparison import ComparisonResult, compare_identifications
from citecheck.citations.context import ContextExtractor
from citecheck.citations.models import Citation, CitationDocument, ValidationTier
from citecheck.citations.normalizer import CitationIdentifier, IdentificationMethod
from citecheck.exceptions import (
    CitationNotFoundError,
    JobAlreadyActiveError,
    PersistenceError,
    ResultVerificationError,
)
from citecheck.jobs.document_store import DocumentStore, TierResult, WriteOutcome
from citecheck.jobs.models import JobStatusReport, PipelineRun, TierProgress, UnresolvedCitation
from citecheck.jobs.orm import JobStatus, QueueItemModel, QueueItemStatus, ValidationJobModel
from citecheck.jobs.queue_store import DEFAULT_STUCK_TIMEOUT, CompletionResult, EnsureOutcome, QueueStore
from citecheck.verification.audit import AuditEvent, get_audit_logger, log_audit_event
from citecheck.verification.panel import ConsensusPanel
from citecheck.verification.usage import UsageSummary, citation_verdicts, summarize_usage

DEFAULT_MAX_ITEM_RETRIES = 3


def _default_identifier(method: IdentificationMethod) -> CitationIdentifier:
    return CitationIdentifier(method=method)


class ValidationOrchestrator:
    """
    Runs identification and validation jobs for stored documents.

    Usage:
        orchestrator = ValidationOrchestrator(documents, queue, panel)
        orchestrator.identify_document(doc_id, method="custom")
        job = orchestrator.start_job(doc_id)
        item = queue.claim_next()
        orchestrator.process_item(item)
        orchestrator.get_job_status(job.id).status  # JobStatus.COMPLETED
    """

    def __init__(
        self,
        documents: DocumentStore,
        queue: QueueStore,
        panel: ConsensusPanel,
        context_extractor: Optional[ContextExtractor] = None,
        identifier_factory: Callable[[IdentificationMethod], CitationIdentifier] = _default_identifier,
        max_item_retries: int = DEFAULT_MAX_ITEM_RETRIES,
        stuck_timeout: timedelta = DEFAULT_STUCK_TIMEOUT
    ):
        """
        Initialize the orchestrator.

        Args:
            documents: Document store
            queue: Job/queue store
            panel: Consensus panel running Tier 2 and Tier 3
            context_extractor: Context extractor (defaults to two preceding sentences)
            identifier_factory: Builds a CitationIdentifier for a method
            max_item_retries: Failures allowed per queue item
            stuck_timeout: Processing time after which an item is recovered
        """
        self.documents = documents
        self.queue = queue
        self.panel = panel
        self.context_extractor = context_extractor or ContextExtractor()
        self.identifier_factory = identifier_factory
        self.max_item_retries = max_item_retries
        self.stuck_timeout = stuck_timeout
        self.logger = get_audit_logger("orchestrator")

    # --- Documents and identification ---

    def create_document(self, document: CitationDocument, document_id: Optional[str] = None) -> str:
        return self.documents.create(document, document_id)

    def get_document(self, document_id: str) -> CitationDocument:
        return self.documents.get(document_id)

    def _ensure_no_active_job(self, document_id: str) -> None:
        active = self.queue.find_active_job(document_id)
        if active is not None:
            raise JobAlreadyActiveError(document_id, active.id)

    def identify_document(self, document_id: str, method: IdentificationMethod = "custom") -> CitationDocument:
        """
        Identify citations in a stored document and save the result.

        Re-identification replaces the citation set, so it is refused while
        a validation job for the document is pending.

        Args:
            document_id: Stored document
            method: "custom" or "eyecite"

        Returns:
            The annotated document
        """
        self._ensure_no_active_job(document_id)
        start = time.perf_counter()

        document = self.documents.get(document_id)
        annotated = self.identifier_factory(method).identify(document)
        self.documents.replace(document_id, annotated)

        log_audit_event(self.logger, AuditEvent(
            event_type="document_identified",
            input_data={"document_id": document_id, "method": method},
            result=str(annotated.metadata.total_citations),
            duration_ms=int((time.perf_counter() - start) * 1000),
        ))
        return annotated

    def reidentify_paragraph(
        self,
        document_id: str,
        paragraph_id: str,
        method: Optional[IdentificationMethod] = None
    ) -> CitationDocument:
        """
        Re-identify one paragraph after its text changed.

        Args:
            document_id: Stored document
            paragraph_id: Paragraph to rescan
            method: Identification method; defaults to the one the document
                    was last identified with

        Returns:
            The updated document
        """
        self._ensure_no_active_job(document_id)
        document = self.documents.get(document_id)
        method = method or document.metadata.identification_method or "custom"

        updated = self.identifier_factory(method).reidentify_paragraph(document, paragraph_id)
        self.documents.replace(document_id, updated)
        return updated

    def compare_identification_methods(self, document_id: str) -> ComparisonResult:
        """Identify with both methods (without saving) and compare the results."""
        document = self.documents.get(document_id)
        custom = self.identifier_factory("custom").identify(document.model_copy(deep=True))
        eyecite = self.identifier_factory("eyecite").identify(document.model_copy(deep=True))
        return compare_identifications(custom, eyecite)

    def get_citation_context(self, document_id: str, citation_id: str) -> str:
        document = self.documents.get(document_id)
        if document.get_citation(citation_id) is None:
            raise CitationNotFoundError(citation_id, document_id)
        return self.context_extractor.extract(citation_id, document)

    # --- Jobs ---

    def start_job(
        self,
        document_id: str,
        citation_ids: Optional[Sequence[str]] = None,
        reset_results: bool = False,
        force_tier3: bool = False
    ) -> ValidationJobModel:
        """
        Create a validation job for a document.

        Args:
            document_id: Identified document
            citation_ids: Restrict the job to these citations (default: all)
            reset_results: Clear existing Tier 2/3 results of the scoped
                           citations first (revalidation)
            force_tier3: Queue Tier 3 for every scoped citation

        Returns:
            The created job

        Raises:
            JobAlreadyActiveError: A job for the document is still pending
            CitationNotFoundError: An unknown citation id was given
        """
        self._ensure_no_active_job(document_id)
        document = self.documents.get(document_id)
        scoped = self._scope(document, citation_ids)

        job = self.queue.create_job(
            document_id,
            [(citation.id, index) for citation, index in scoped],
            force_tier3=force_tier3,
        )
        # Cleared only once the job exists; a rejected start leaves results intact.
        # An item claimed before the clear is redone by reconciliation.
        if reset_results and scoped:
            self.documents.clear_tier_results(document_id, [c.id for c, _ in scoped])

        log_audit_event(self.logger, AuditEvent(
            event_type="job_created",
            input_data={
                "job_id": job.id,
                "document_id": document_id,
                "tier2_items": len(scoped),
                "force_tier3": force_tier3,
            },
            result="PENDING",
        ))

        if not scoped:
            self.check_job_completion(job.id)
        return self.queue.get_job(job.id)

    def revalidate_citation(self, document_id: str, citation_id: str, force_tier3: bool = False) -> ValidationJobModel:
        """Clear one citation's panel results and run a job scoped to it."""
        return self.start_job(document_id, [citation_id], reset_results=True, force_tier3=force_tier3)

    def run_full_pipeline(
        self,
        document_id: str,
        method: IdentificationMethod = "custom",
        reidentify: bool = False,
        force_tier3: bool = False
    ) -> PipelineRun:
        """
        Identify citations if needed, then start a validation job.

        A document that was never identified is identified first; one that
        was is validated as stored unless reidentify is set.

        Args:
            document_id: Stored document
            method: Identification method when identification runs
            reidentify: Identify again even if the document was identified before
            force_tier3: Queue Tier 3 for every citation

        Returns:
            PipelineRun with the created job

        Raises:
            JobAlreadyActiveError: A job for the document is still pending
        """
        self._ensure_no_active_job(document_id)
        document = self.documents.get(document_id)

        identified = reidentify or document.metadata.identification_method is None
        if identified:
            document = self.identify_document(document_id, method)

        job = self.start_job(document_id, force_tier3=force_tier3)
        log_audit_event(self.logger, AuditEvent(
            event_type="pipeline_started",
            input_data={"document_id": document_id, "job_id": job.id, "identified": identified, "method": method},
            result=job.status.value.upper(),
        ))
        return PipelineRun(
            document_id=document_id,
            job_id=job.id,
            status=job.status,
            identified=identified,
            total_citations=len(document.citations),
            tier2_total=job.tier2_total,
        )

    @staticmethod
    def _scope(document: CitationDocument, citation_ids: Optional[Sequence[str]]) -> List[Tuple[Citation, int]]:
        indexed = [(citation, index) for index, citation in enumerate(document.citations)]
        if citation_ids is None:
            return indexed

        wanted = set(citation_ids)
        known = {citation.id for citation in document.citations}
        for citation_id in citation_ids:
            if citation_id not in known:
                raise CitationNotFoundError(citation_id)
        return [(citation, index) for citation, index in indexed if citation.id in wanted]

    def process_item(self, item: QueueItemModel) -> CompletionResult:
        """
        Process one claimed queue item.

        The panel result is written onto the citation addressed by id, only
        if that tier is still empty, and then read back. A result that does
        not read back raises ResultVerificationError so the caller fails the
        item for retry.

        Args:
            item: Item in processing state

        Returns:
            CompletionResult from the queue store
        """
        start = time.perf_counter()
        job = self.queue.get_job(item.job_id)
        document_id = job.document_id
        document = self.documents.get(document_id)

        citation = document.get_citation(item.citation_id)
        if citation is None:
            raise CitationNotFoundError(item.citation_id, document_id)

        result = self._evaluate(item.tier, citation, document)
        outcome = self.documents.apply_tier_result(document_id, citation.id, item.tier, result)
        if outcome == WriteOutcome.ALREADY_PRESENT:
            log_audit_event(self.logger, AuditEvent(
                event_type="tier_result_exists",
                citation_id=citation.id,
                input_data={"job_id": job.id, "item_id": item.id, "tier": item.tier.value},
                result="SKIPPED",
                reason="citation already carries a result for this tier",
            ))

        stored = self.documents.get(document_id).get_citation(citation.id)
        if stored is None or not stored.has_result(item.tier):
            log_audit_event(self.logger, AuditEvent(
                event_type="tier_result_unverified",
                citation_id=citation.id,
                input_data={"job_id": job.id, "item_id": item.id, "tier": item.tier.value},
                result="UNVERIFIED",
            ))
            raise ResultVerificationError(document_id, citation.id, item.tier.value)

        stored_result = stored.validation if item.tier == ValidationTier.TIER2 else stored.tier_3
        escalate = item.tier == ValidationTier.TIER2 and (stored.needs_tier3 or job.force_tier3)

        completion = self.queue.complete_item(item.id, stored_result.model_dump(mode="json"), escalate=escalate)

        log_audit_event(self.logger, AuditEvent(
            event_type="queue_item_completed",
            citation_id=citation.id,
            input_data={
                "job_id": job.id,
                "item_id": item.id,
                "tier": item.tier.value,
                "write": outcome.value,
                "tier3_created": completion.tier3_created,
            },
            result="COMPLETED" if completion.completed else "SKIPPED",
            duration_ms=int((time.perf_counter() - start) * 1000),
            reason=None if completion.completed else "item no longer processing",
        ))

        self.check_job_completion(job.id)
        return completion

    def _evaluate(self, tier: ValidationTier, citation: Citation, document: CitationDocument) -> TierResult:
        # A result already on the citation is reused; the write below is then a no-op
        if citation.has_result(tier):
            return citation.validation if tier == ValidationTier.TIER2 else citation.tier_3

        context = self.context_extractor.extract(citation.id, document)
        if tier == ValidationTier.TIER2:
            return self.panel.run_tier2(citation, context)

        if citation.validation is None:
            raise PersistenceError(
                "Tier 2 result missing for Tier 3 item",
                {"citation_id": citation.id},
            )
        return self.panel.run_tier3(citation, context, citation.validation)

    def fail_item(self, item: QueueItemModel, error: BaseException) -> Optional[int]:
        """
        Record a failed attempt on an item and re-check its job.

        Returns:
            The item's retry count, or None if it was no longer processing
        """
        retry_count = self.queue.fail_item(item.id, f"{type(error).__name__}: {error}")
        log_audit_event(self.logger, AuditEvent(
            event_type="queue_item_failed",
            citation_id=item.citation_id,
            input_data={
                "job_id": item.job_id,
                "item_id": item.id,
                "tier": item.tier.value,
                "retry_count": retry_count,
            },
            result="FAILED",
            reason=str(error),
        ))
        self.check_job_completion(item.job_id)
        return retry_count

    def recover_queue(self) -> Tuple[int, int]:
        """
        Return stuck and retryable failed items to pending.

        Returns:
            (recovered stuck items, requeued failed items)
        """
        recovered = self.queue.recover_stuck_items(self.stuck_timeout)
        requeued = self.queue.requeue_failed_items(self.max_item_retries)
        if recovered:
            log_audit_event(self.logger, AuditEvent(
                event_type="stuck_items_recovered",
                input_data={"count": recovered, "timeout_s": int(self.stuck_timeout.total_seconds())},
                result="RECOVERED",
            ))
        return recovered, requeued

    def check_job_completion(self, job_id: str) -> JobStatus:
        """
        Complete or fail a job once its queue has drained.

        A drained queue is not enough: the document is reconciled first.
        Every scoped citation must carry a Tier 2 result, and every
        escalated citation a Tier 3 result. Each gap is requeued while its
        item has retries left. Gaps with retries exhausted fail the job with
        the unresolved citations recorded in its diagnostics.

        Args:
            job_id: Job to check

        Returns:
            The job's status after the check
        """
        job = self.queue.get_job(job_id)
        if job.status != JobStatus.PENDING:
            return job.status

        counts = self.queue.count_by_status(job_id)
        for tier_counts in counts.values():
            if tier_counts[QueueItemStatus.PENDING] or tier_counts[QueueItemStatus.PROCESSING]:
                return JobStatus.PENDING

        document = self.documents.get(job.document_id)
        scope = {item.citation_id for item in self.queue.get_items(job_id, ValidationTier.TIER2)}
        positions = {citation.id: index for index, citation in enumerate(document.citations)}

        unresolved: List[UnresolvedCitation] = []
        reopened = 0
        for citation_id in sorted(scope, key=lambda cid: positions.get(cid, len(positions))):
            citation = document.get_citation(citation_id)
            if citation is None:
                unresolved.append(UnresolvedCitation(citation_id=citation_id, tier=ValidationTier.TIER2))
                continue

            if citation.validation is None:
                tier = ValidationTier.TIER2
            elif (citation.needs_tier3 or job.force_tier3) and citation.tier_3 is None:
                tier = ValidationTier.TIER3
            else:
                continue

            outcome = self.queue.ensure_item(
                job_id, citation_id, positions[citation_id], tier, self.max_item_retries
            )
            if outcome == EnsureOutcome.EXHAUSTED:
                unresolved.append(UnresolvedCitation(citation_id=citation_id, tier=tier))
            else:
                reopened += 1

        if reopened:
            log_audit_event(self.logger, AuditEvent(
                event_type="job_reconciled",
                input_data={"job_id": job_id, "reopened": reopened, "unresolved": len(unresolved)},
                result="RETRY",
                reason="citations missing results after queue drained",
            ))
            return JobStatus.PENDING

        usage = self._job_usage(job, document, scope)
        if unresolved:
            tier2_gaps = sum(1 for u in unresolved if u.tier == ValidationTier.TIER2)
            tier3_gaps = len(unresolved) - tier2_gaps
            error = (
                f"{len(unresolved)} citation result(s) unresolved after {self.max_item_retries} attempts "
                f"({tier2_gaps} tier2, {tier3_gaps} tier3)"
            )
            diagnostics = {
                "unresolved": [u.model_dump(mode="json") for u in unresolved],
                "unresolved_tier2": tier2_gaps,
                "unresolved_tier3": tier3_gaps,
                "usage": usage.model_dump(mode="json"),
            }
            if self.queue.mark_job_failed(job_id, error, diagnostics):
                log_audit_event(self.logger, AuditEvent(
                    event_type="job_failed",
                    input_data={"job_id": job_id, "document_id": job.document_id, **diagnostics},
                    result="ERROR",
                    reason=error,
                ))
            return self.queue.get_job(job_id).status

        if self.queue.mark_job_completed(job_id, {"usage": usage.model_dump(mode="json")}):
            log_audit_event(self.logger, AuditEvent(
                event_type="job_completed",
                input_data={
                    "job_id": job_id,
                    "document_id": job.document_id,
                    "total_tokens": usage.total_tokens,
                    "cost_usd": round(usage.total.total_cost, 6),
                },
                result="COMPLETED",
            ))
        return self.queue.get_job(job_id).status

    @staticmethod
    def _job_usage(job: ValidationJobModel, document: CitationDocument, citation_ids) -> UsageSummary:
        # Votes reused from earlier jobs predate this one and are not counted
        verdicts = []
        for citation_id in citation_ids:
            citation = document.get_citation(citation_id)
            if citation is not None:
                verdicts.extend(citation_verdicts(citation))
        return summarize_usage(verdicts, since=job.created_at)

    def get_job_status(self, job_id: str) -> JobStatusReport:
        """
        Build the status report for a job.

        Raises:
            JobNotFoundError: Unknown job id
        """
        job = self.queue.get_job(job_id)
        counts = self.queue.count_by_status(job_id)

        def progress(tier: ValidationTier, total: int, completed: int) -> TierProgress:
            tier_counts = counts[tier]
            return TierProgress(
                total=total,
                completed=completed,
                percentage=round(min(100.0, completed / total * 100), 1) if total else 0.0,
                pending=tier_counts[QueueItemStatus.PENDING],
                processing=tier_counts[QueueItemStatus.PROCESSING],
                completed_items=tier_counts[QueueItemStatus.COMPLETED],
                failed=tier_counts[QueueItemStatus.FAILED],
            )

        diagnostics = job.diagnostics or {}
        unresolved = [UnresolvedCitation.model_validate(entry) for entry in diagnostics.get("unresolved", [])]
        usage = diagnostics.get("usage")
        return JobStatusReport(
            job_id=job.id,
            document_id=job.document_id,
            status=job.status,
            force_tier3=job.force_tier3,
            tier2=progress(ValidationTier.TIER2, job.tier2_total, job.tier2_completed),
            tier3=progress(ValidationTier.TIER3, job.tier3_total, job.tier3_completed),
            error=job.error,
            unresolved=unresolved,
            usage=UsageSummary.model_validate(usage) if usage else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
