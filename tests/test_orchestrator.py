"""
Tests for the validation job orchestrator.

The panel runs against the scripted evaluator; documents and queue live in
a temporary SQLite database.
"""

from datetime import timedelta

import pytest

from citecheck.citations.models import (
    CitationDocument,
    ContentParagraph,
    FinalStatus,
    Recommendation,
    TokenUsage,
    ValidationTier,
    Verdict,
)
from citecheck.exceptions import (
    CitationNotFoundError,
    JobAlreadyActiveError,
    JobNotFoundError,
)
from citecheck.jobs import JobStatus, QueueItemStatus, QueueStore, QueueWorker, ValidationOrchestrator
from citecheck.jobs.db import utcnow
from citecheck.jobs.document_store import WriteOutcome
from citecheck.verification import ConsensusPanel
from citecheck.verification.prompts import TIER2_ROLES
from tests.conftest import ScriptedEvaluator, no_sleep


def escalating_orchestrator(documents, queue, retry_policy, citation_id="cit_002"):
    """Orchestrator whose panel splits 3-2 on one citation."""
    evaluator = ScriptedEvaluator(by_citation={citation_id: {
        TIER2_ROLES[0].name: Verdict.INVALID,
        TIER2_ROLES[1].name: Verdict.INVALID,
    }})
    panel = ConsensusPanel(evaluator=evaluator, retry_policy=retry_policy, sleep=no_sleep)
    return ValidationOrchestrator(documents=documents, queue=queue, panel=panel)


# ============================================
# Identification
# ============================================

class TestIdentification:
    """Test identification through the orchestrator."""

    def test_identify_saves_document(self, orchestrator, identified_document_id):
        document = orchestrator.get_document(identified_document_id)

        assert [c.id for c in document.citations] == ["cit_001", "cit_002"]
        assert document.metadata.identification_method == "custom"
        assert "[CITATION:cit_002]28 U.S.C. § 1332(a)[/CITATION:cit_002]" in document.content[0].text

    def test_context(self, orchestrator, identified_document_id):
        context = orchestrator.get_citation_context(identified_document_id, "cit_002")
        assert "[CITATION" not in context
        assert "28 U.S.C. § 1332(a)" in context

    def test_context_unknown_citation(self, orchestrator, identified_document_id):
        with pytest.raises(CitationNotFoundError):
            orchestrator.get_citation_context(identified_document_id, "cit_099")

    def test_identify_refused_while_job_active(self, orchestrator, identified_document_id):
        orchestrator.start_job(identified_document_id)
        with pytest.raises(JobAlreadyActiveError):
            orchestrator.identify_document(identified_document_id)


# ============================================
# Jobs
# ============================================

class TestValidationJobs:
    """Test job processing end to end."""

    def test_end_to_end(self, orchestrator, worker, identified_document_id):
        """Two citations, unanimous panels, no escalation."""
        job = orchestrator.start_job(identified_document_id)
        assert job.tier2_total == 2

        result = worker.process_batch()

        assert result.processed == 2
        assert not result.has_more
        report = orchestrator.get_job_status(job.id)
        assert report.status == JobStatus.COMPLETED
        assert report.tier2.completed == 2
        assert report.tier2.percentage == 100.0
        assert report.tier3.total == 0

        document = orchestrator.get_document(identified_document_id)
        for citation in document.citations:
            assert citation.validation.consensus.recommendation == Recommendation.CITATION_LIKELY_VALID
            assert citation.tier_3 is None

    def test_split_panel_escalates(self, documents, queue, retry_policy, identified_document_id):
        orchestrator = escalating_orchestrator(documents, queue, retry_policy)
        job = orchestrator.start_job(identified_document_id)

        result = QueueWorker(orchestrator, batch_size=10).process_batch()

        assert result.processed == 3
        report = orchestrator.get_job_status(job.id)
        assert report.status == JobStatus.COMPLETED
        assert report.tier3.total == 1
        assert report.tier3.completed == 1

        citation = documents.get(identified_document_id).get_citation("cit_002")
        assert citation.validation.consensus.tier_3_trigger
        assert citation.tier_3.consensus.final_status == FinalStatus.VALID
        assert documents.get(identified_document_id).get_citation("cit_001").tier_3 is None

    def test_revalidate_with_forced_tier3(self, orchestrator, worker, evaluator, identified_document_id):
        orchestrator.start_job(identified_document_id)
        worker.process_batch()
        calls_before = len(evaluator.calls_for("cit_001"))

        job = orchestrator.revalidate_citation(identified_document_id, "cit_001", force_tier3=True)
        result = worker.process_batch()

        assert job.tier2_total == 1
        assert result.processed == 2
        assert len(evaluator.calls_for("cit_001")) == calls_before + 5 + 3
        citation = orchestrator.get_document(identified_document_id).get_citation("cit_001")
        assert citation.tier_3 is not None
        assert orchestrator.get_job_status(job.id).status == JobStatus.COMPLETED

    def test_one_active_job(self, orchestrator, identified_document_id):
        orchestrator.start_job(identified_document_id)
        with pytest.raises(JobAlreadyActiveError):
            orchestrator.start_job(identified_document_id)

    def test_rejected_revalidation_keeps_results(
        self, orchestrator, worker, identified_document_id, monkeypatch
    ):
        """A revalidation that loses the race to another job clears nothing."""
        orchestrator.start_job(identified_document_id)
        worker.process_batch()
        active = orchestrator.start_job(identified_document_id)

        # Simulate the window between the active-job check and the insert
        monkeypatch.setattr(orchestrator, "_ensure_no_active_job", lambda document_id: None)
        with pytest.raises(JobAlreadyActiveError) as excinfo:
            orchestrator.revalidate_citation(identified_document_id, "cit_001")

        assert excinfo.value.details["job_id"] == active.id
        citation = orchestrator.get_document(identified_document_id).get_citation("cit_001")
        assert citation.validation is not None

    def test_unknown_citation_scope(self, orchestrator, identified_document_id):
        with pytest.raises(CitationNotFoundError):
            orchestrator.start_job(identified_document_id, ["cit_404"])

    def test_existing_results_reused(self, orchestrator, worker, evaluator, identified_document_id):
        """A second job over already-validated citations makes no evaluator calls."""
        orchestrator.start_job(identified_document_id)
        worker.process_batch()
        calls_before = len(evaluator.calls)

        job = orchestrator.start_job(identified_document_id)
        result = worker.process_batch()

        assert result.processed == 2
        assert len(evaluator.calls) == calls_before
        assert orchestrator.get_job_status(job.id).status == JobStatus.COMPLETED

    def test_empty_document_completes_immediately(self, orchestrator):
        document_id = orchestrator.create_document(
            CitationDocument(content=[ContentParagraph(id="p1", text="No authorities here.")])
        )
        orchestrator.identify_document(document_id)

        job = orchestrator.start_job(document_id)

        assert job.status == JobStatus.COMPLETED
        assert job.tier2_total == 0

    def test_job_not_found(self, orchestrator):
        with pytest.raises(JobNotFoundError):
            orchestrator.get_job_status("missing")


# ============================================
# Full pipeline
# ============================================

class TestFullPipeline:
    """Test identify-then-validate in one call."""

    def test_identifies_then_starts_job(self, orchestrator, worker, sample_document):
        document_id = orchestrator.create_document(sample_document, "doc-1")

        run = orchestrator.run_full_pipeline(document_id)

        assert run.identified
        assert (run.total_citations, run.tier2_total) == (2, 2)
        assert run.status == JobStatus.PENDING

        worker.process_batch()
        assert orchestrator.get_job_status(run.job_id).status == JobStatus.COMPLETED

    def test_identified_document_validated_as_stored(self, orchestrator, identified_document_id, monkeypatch):
        identify_calls = []
        monkeypatch.setattr(orchestrator, "identify_document", lambda *args: identify_calls.append(args))

        run = orchestrator.run_full_pipeline(identified_document_id)

        assert not run.identified
        assert identify_calls == []
        assert run.tier2_total == 2

    def test_reidentify(self, orchestrator, identified_document_id):
        run = orchestrator.run_full_pipeline(identified_document_id, reidentify=True)

        assert run.identified
        assert run.total_citations == 2

    def test_refused_while_job_active(self, orchestrator, identified_document_id):
        orchestrator.start_job(identified_document_id)
        with pytest.raises(JobAlreadyActiveError):
            orchestrator.run_full_pipeline(identified_document_id, reidentify=True)


# ============================================
# Token usage
# ============================================

class TestJobUsage:
    """Test token usage and cost recorded on finished jobs."""

    @pytest.fixture
    def metered(self, documents, queue, retry_policy):
        usage = TokenUsage(input_tokens=1000, output_tokens=100, total_tokens=1100, model="gpt-4o-mini")
        panel = ConsensusPanel(evaluator=ScriptedEvaluator(usage=usage), retry_policy=retry_policy, sleep=no_sleep)
        return ValidationOrchestrator(documents=documents, queue=queue, panel=panel)

    def test_completed_job_reports_usage(self, metered, identified_document_id):
        job = metered.start_job(identified_document_id)
        assert metered.get_job_status(job.id).usage is None

        QueueWorker(metered, batch_size=10).process_batch()

        report = metered.get_job_status(job.id)
        assert report.status == JobStatus.COMPLETED
        assert report.usage.total_tokens == 2 * 5 * 1100
        assert report.usage.by_model["gpt-4o-mini"].calls == 10
        assert report.usage.total.total_cost == pytest.approx(0.0021)

    def test_reused_results_not_counted(self, metered, identified_document_id):
        metered.start_job(identified_document_id)
        QueueWorker(metered, batch_size=10).process_batch()

        job = metered.start_job(identified_document_id)
        QueueWorker(metered, batch_size=10).process_batch()

        report = metered.get_job_status(job.id)
        assert report.status == JobStatus.COMPLETED
        assert report.usage.total_tokens == 0


# ============================================
# Failure handling and reconciliation
# ============================================

class TestReconciliation:
    """Test that a job never completes with missing results."""

    def test_lost_write_fails_job_after_retries(
        self, orchestrator, worker, documents, identified_document_id, monkeypatch
    ):
        """A write that never reads back exhausts the item and fails the job."""
        original = documents.apply_tier_result

        def lossy(document_id, citation_id, tier, result):
            if citation_id == "cit_001":
                return WriteOutcome.WRITTEN
            return original(document_id, citation_id, tier, result)

        monkeypatch.setattr(documents, "apply_tier_result", lossy)
        job = orchestrator.start_job(identified_document_id)

        result = worker.process_batch()

        assert result.failed == 3
        assert result.processed == 1
        report = orchestrator.get_job_status(job.id)
        assert report.status == JobStatus.FAILED
        assert [u.model_dump(mode="json") for u in report.unresolved] == [
            {"citation_id": "cit_001", "tier": "tier2"}
        ]
        assert "1 citation result(s) unresolved" in report.error
        assert report.tier2.failed == 1

    def test_completed_item_without_result_is_redone(self, orchestrator, worker, queue, identified_document_id):
        job = orchestrator.start_job(identified_document_id)
        item = queue.claim_next(job.id)
        queue.complete_item(item.id, {}, escalate=False)

        result = worker.process_batch()

        assert result.processed == 2
        assert queue.get_item(item.id).retry_count == 1
        report = orchestrator.get_job_status(job.id)
        assert report.status == JobStatus.COMPLETED
        assert report.tier2.completed == 2
        assert orchestrator.get_document(identified_document_id).get_citation("cit_001").validation is not None

    def test_stuck_item_recovered_by_worker(self, orchestrator, worker, session_factory, identified_document_id):
        job = orchestrator.start_job(identified_document_id)
        past = QueueStore(session_factory, now=lambda: utcnow() - timedelta(minutes=11))
        stuck = past.claim_next(job.id)

        result = worker.process_batch()

        assert result.recovered == 1
        assert result.processed == 2
        assert stuck.id in result.item_ids
        assert orchestrator.get_job_status(job.id).status == JobStatus.COMPLETED

    def test_failed_item_retried(self, documents, queue, retry_policy, identified_document_id, monkeypatch):
        """One transient store failure is retried and the job still completes."""
        orchestrator = ValidationOrchestrator(
            documents=documents,
            queue=queue,
            panel=ConsensusPanel(evaluator=ScriptedEvaluator(), retry_policy=retry_policy, sleep=no_sleep),
        )
        original = documents.apply_tier_result
        failures = []

        def flaky(document_id, citation_id, tier, result):
            if citation_id == "cit_002" and not failures:
                failures.append(citation_id)
                raise RuntimeError("connection reset")
            return original(document_id, citation_id, tier, result)

        monkeypatch.setattr(documents, "apply_tier_result", flaky)
        job = orchestrator.start_job(identified_document_id)

        result = QueueWorker(orchestrator, batch_size=10).process_batch()

        assert result.failed == 1
        assert result.processed == 2
        item = queue.find_item(job.id, "cit_002", ValidationTier.TIER2)
        assert item.retry_count == 1
        assert item.status == QueueItemStatus.COMPLETED
        assert orchestrator.get_job_status(job.id).status == JobStatus.COMPLETED
