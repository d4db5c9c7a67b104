"""
Wire stores, evaluators and the panel from Settings.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy.engine import Engine

from citecheck.config import Settings, get_settings
from citecheck.jobs.db import create_db_engine, create_session_factory, init_db
from citecheck.jobs.document_store import DocumentStore
from citecheck.jobs.orchestrator import ValidationOrchestrator
from citecheck.jobs.queue_store import QueueStore
from citecheck.verification.evaluator import LLMEvaluator, RetryPolicy
from citecheck.verification.panel import ConsensusPanel


def build_panel(settings: Settings) -> ConsensusPanel:
    """Consensus panel backed by OpenAI chat models."""
    tier2 = LLMEvaluator(
        model=settings.tier2_model,
        timeout=settings.evaluator_timeout,
        api_key=settings.openai_api_key,
    )
    tier3 = LLMEvaluator(
        model=settings.tier3_model,
        timeout=settings.evaluator_timeout,
        api_key=settings.openai_api_key,
    )
    policy = RetryPolicy(
        max_attempts=settings.evaluator_max_attempts,
        base_delay=settings.evaluator_backoff_base,
        max_delay=settings.evaluator_backoff_max,
    )
    return ConsensusPanel(
        evaluator=tier2,
        tier3_evaluator=tier3,
        retry_policy=policy,
        tier3_threshold=settings.tier3_threshold,
    )


def build_orchestrator(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    panel: Optional[ConsensusPanel] = None
) -> ValidationOrchestrator:
    """
    Build a ready-to-use orchestrator.

    Args:
        settings: Settings (defaults to the environment)
        engine: Existing engine (defaults to one for settings.database_url)
        panel: Consensus panel (defaults to build_panel(settings))

    Returns:
        ValidationOrchestrator with its tables created
    """
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)
    stuck_timeout = timedelta(minutes=settings.stuck_timeout_minutes)

    return ValidationOrchestrator(
        documents=DocumentStore(session_factory),
        queue=QueueStore(session_factory, stuck_timeout=stuck_timeout),
        panel=panel or build_panel(settings),
        max_item_retries=settings.max_item_retries,
        stuck_timeout=stuck_timeout,
    )
