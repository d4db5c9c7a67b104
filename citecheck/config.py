"""
Runtime configuration for citecheck.

Settings are read from the environment (a local .env file is honoured via
python-dotenv) and gathered into a single pydantic model.
"""

import os
from functools import lru_cache
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class ModelPricing(BaseModel):
    """Provider list prices in USD per one million tokens."""
    input: float = Field(ge=0.0, description="USD per 1M input tokens")
    output: float = Field(ge=0.0, description="USD per 1M output tokens")


# Update when provider prices change or a new model is configured
MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input=2.50, output=10.00),
    "gpt-4o-mini": ModelPricing(input=0.15, output=0.60),
    "gpt-4-turbo": ModelPricing(input=10.00, output=30.00),
    "gpt-3.5-turbo": ModelPricing(input=0.50, output=1.50),
}


def get_model_pricing(model: str) -> Optional[ModelPricing]:
    return MODEL_PRICING.get(model)


class Settings(BaseModel):
    """Pipeline settings. Defaults match the calibrated consensus math."""

    database_url: str = Field(
        default="sqlite:///citecheck.db",
        description="SQLAlchemy URL for the document and queue store"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="API key for the evaluator model provider"
    )
    tier2_model: str = Field(default="gpt-4o-mini", description="Model used by Tier 2 agents")
    tier3_model: str = Field(default="gpt-4o", description="Model used by Tier 3 agents")
    tier3_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Tier 2 confidence below which a citation escalates to Tier 3"
    )
    max_item_retries: int = Field(
        default=3,
        ge=1,
        description="Failures allowed per queue item before it is left failed"
    )
    evaluator_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per evaluator call before the vote degrades to UNCERTAIN"
    )
    evaluator_backoff_base: float = Field(default=1.0, ge=0.0, description="First backoff delay in seconds")
    evaluator_backoff_max: float = Field(default=10.0, ge=0.0, description="Backoff ceiling in seconds")
    evaluator_timeout: float = Field(default=60.0, gt=0.0, description="Per-request timeout in seconds")
    stuck_timeout_minutes: int = Field(
        default=10,
        ge=1,
        description="Minutes a processing item may go without update before recovery"
    )
    worker_batch_size: int = Field(default=5, ge=1, description="Items claimed per worker batch")
    worker_max_batches: int = Field(
        default=20,
        ge=0,
        description="Batches per run_worker invocation; 0 runs until interrupted"
    )
    log_json: bool = Field(default=True, description="Render structured logs as JSON")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load settings from the environment.

    Returns:
        Cached Settings instance
    """
    load_dotenv()

    return Settings(
        database_url=os.getenv("CITECHECK_DATABASE_URL", "sqlite:///citecheck.db"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        tier2_model=os.getenv("CITECHECK_TIER2_MODEL", "gpt-4o-mini"),
        tier3_model=os.getenv("CITECHECK_TIER3_MODEL", "gpt-4o"),
        tier3_threshold=float(os.getenv("CITECHECK_TIER3_THRESHOLD", "0.8")),
        max_item_retries=int(os.getenv("CITECHECK_MAX_ITEM_RETRIES", "3")),
        evaluator_max_attempts=int(os.getenv("CITECHECK_EVALUATOR_MAX_ATTEMPTS", "3")),
        evaluator_backoff_base=float(os.getenv("CITECHECK_EVALUATOR_BACKOFF_BASE", "1.0")),
        evaluator_backoff_max=float(os.getenv("CITECHECK_EVALUATOR_BACKOFF_MAX", "10.0")),
        evaluator_timeout=float(os.getenv("CITECHECK_EVALUATOR_TIMEOUT", "60")),
        stuck_timeout_minutes=int(os.getenv("CITECHECK_STUCK_TIMEOUT_MINUTES", "10")),
        worker_batch_size=int(os.getenv("CITECHECK_WORKER_BATCH_SIZE", "5")),
        worker_max_batches=int(os.getenv("CITECHECK_WORKER_MAX_BATCHES", "20")),
        log_json=_env_bool("CITECHECK_LOG_JSON", True),
    )
