"""
Pytest configuration and shared fixtures for citecheck tests.

This module provides common test fixtures for:
- A temporary SQLite database with document and queue stores
- A scripted evaluator standing in for the LLM panel members
- Sample citation documents
"""

import threading
from typing import Dict, Optional

import pytest

from citecheck.citations.models import (
    Citation,
    CitationDocument,
    CitationType,
    ContentParagraph,
    Tier1Result,
    Tier1Status,
    TokenUsage,
    Verdict,
)
from citecheck.jobs import (
    DocumentStore,
    QueueStore,
    QueueWorker,
    ValidationOrchestrator,
    create_db_engine,
    create_session_factory,
    init_db,
)
from citecheck.verification import ConsensusPanel, EvaluatorResponse, RetryPolicy

END_TO_END_TEXT = (
    "In Smith v. Jones, 123 F.3d 456 (D.C. Cir. 2020), the court held that diversity "
    "jurisdiction under 28 U.S.C. § 1332(a) requires complete diversity."
)


# ============================================
# Evaluator Fixtures
# ============================================

class ScriptedEvaluator:
    """
    Evaluator returning scripted verdicts.

    Verdicts are looked up per (citation id, role name), then per role name,
    then fall back to the default. Every call is recorded. When usage is
    given, each answer reports it.
    """

    def __init__(
        self,
        default: Verdict = Verdict.VALID,
        by_role: Optional[Dict[str, Verdict]] = None,
        by_citation: Optional[Dict[str, Dict[str, Verdict]]] = None,
        error: Optional[Exception] = None,
        usage: Optional[TokenUsage] = None
    ):
        self.default = default
        self.usage = usage
        self.by_role = by_role or {}
        self.by_citation = by_citation or {}
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def evaluate(self, role, citation, context, prior_panel=None):
        with self._lock:
            self.calls.append({
                "role": role.name,
                "citation_id": citation.id,
                "context": context,
                "prior_panel": prior_panel,
            })
        if self.error is not None:
            raise self.error

        verdict = self.by_citation.get(citation.id, {}).get(role.name)
        if verdict is None:
            verdict = self.by_role.get(role.name, self.default)
        reason = None if verdict == Verdict.VALID else "mixed_signals"
        return EvaluatorResponse(verdict=verdict, reason_code=reason, model="scripted", token_usage=self.usage)

    def calls_for(self, citation_id: str):
        return [call for call in self.calls if call["citation_id"] == citation_id]


def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def evaluator():
    return ScriptedEvaluator()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)


@pytest.fixture
def panel(evaluator, retry_policy):
    return ConsensusPanel(evaluator=evaluator, retry_policy=retry_policy, sleep=no_sleep)


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so that worker threads share one database."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'citecheck.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def documents(session_factory):
    return DocumentStore(session_factory)


@pytest.fixture
def queue(session_factory):
    return QueueStore(session_factory)


@pytest.fixture
def orchestrator(documents, queue, panel):
    return ValidationOrchestrator(documents=documents, queue=queue, panel=panel)


@pytest.fixture
def worker(orchestrator):
    return QueueWorker(orchestrator, batch_size=10)


# ============================================
# Document Fixtures
# ============================================

def make_citation(
    citation_id: str,
    citation_text: str,
    citation_type: CitationType = CitationType.STATUTE,
    components: Optional[dict] = None
) -> Citation:
    return Citation(
        id=citation_id,
        citation_text=citation_text,
        citation_type=citation_type,
        extracted_components=components or {},
        tier_1=Tier1Result(status=Tier1Status.VALID_FORMAT, confidence=0.98),
    )


@pytest.fixture
def sample_document():
    """One paragraph with one case citation and one statute citation."""
    return CitationDocument(content=[ContentParagraph(id="p1", text=END_TO_END_TEXT)])


@pytest.fixture
def identified_document_id(orchestrator, sample_document):
    """Stored and identified sample document."""
    document_id = orchestrator.create_document(sample_document, "doc-1")
    orchestrator.identify_document(document_id, method="custom")
    return document_id
