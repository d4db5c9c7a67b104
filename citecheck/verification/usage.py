"""
Token usage tracking and cost accounting.

Each evaluator call records the provider-reported token counts on its vote.
Votes are aggregated per model and priced with the table in
citecheck.config.MODEL_PRICING (USD per one million tokens).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from citecheck.citations.models import AgentVerdict, Citation, TokenUsage
from citecheck.config import get_model_pricing

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "unknown"


class TokenCost(BaseModel):
    """Cost of some token usage."""
    input_cost: float = Field(default=0.0, ge=0.0)
    output_cost: float = Field(default=0.0, ge=0.0)
    total_cost: float = Field(default=0.0, ge=0.0)
    currency: str = "USD"


class ModelUsage(BaseModel):
    """Usage and cost aggregated for one model."""
    model: str
    calls: int = Field(default=0, ge=0, description="Votes that reported usage")
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost: TokenCost = Field(default_factory=TokenCost)


class UsageSummary(BaseModel):
    """Usage and cost across all models."""
    by_model: Dict[str, ModelUsage] = Field(default_factory=dict)
    total_tokens: int = Field(default=0, ge=0)
    total: TokenCost = Field(default_factory=TokenCost)


def extract_token_usage(message: Any, model: str) -> Optional[TokenUsage]:
    """
    Read token counts from a chat model response.

    LangChain's normalized usage_metadata is preferred; OpenAI's raw
    token_usage in response_metadata is the fallback.

    Args:
        message: AIMessage returned by the chat model
        model: Model name to bill the usage to

    Returns:
        TokenUsage, or None if the response reports no usage
    """
    usage = getattr(message, "usage_metadata", None)
    if usage:
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage.get("total_tokens") or input_tokens + output_tokens,
            model=model,
        )

    reported = (getattr(message, "response_metadata", None) or {}).get("token_usage")
    if reported:
        input_tokens = reported.get("prompt_tokens") or 0
        output_tokens = reported.get("completion_tokens") or 0
        return TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=reported.get("total_tokens") or input_tokens + output_tokens,
            model=model,
        )
    return None


def calculate_cost(usage: TokenUsage) -> TokenCost:
    """Price usage with the model pricing table; unknown models cost 0."""
    pricing = get_model_pricing(usage.model) if usage.model else None
    if pricing is None:
        logger.warning("No pricing configured for model %s", usage.model)
        return TokenCost()

    input_cost = usage.input_tokens / 1_000_000 * pricing.input
    output_cost = usage.output_tokens / 1_000_000 * pricing.output
    return TokenCost(input_cost=input_cost, output_cost=output_cost, total_cost=input_cost + output_cost)


def citation_verdicts(citation: Citation) -> List[AgentVerdict]:
    """All Tier 2 and Tier 3 votes recorded on a citation."""
    verdicts: List[AgentVerdict] = []
    if citation.validation is not None:
        verdicts.extend(citation.validation.panel_evaluation)
    if citation.tier_3 is not None:
        verdicts.extend(citation.tier_3.panel_evaluation)
    return verdicts


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def summarize_usage(verdicts: Iterable[AgentVerdict], since: Optional[datetime] = None) -> UsageSummary:
    """
    Aggregate vote usage per model and price it.

    Args:
        verdicts: Votes to aggregate; votes without usage are skipped
        since: Only count votes recorded at or after this time

    Returns:
        UsageSummary
    """
    since = _as_utc(since) if since is not None else None
    by_model: Dict[str, ModelUsage] = {}

    for verdict in verdicts:
        usage = verdict.token_usage
        if usage is None:
            continue
        if since is not None and _as_utc(verdict.timestamp) < since:
            continue

        model = usage.model or verdict.model or UNKNOWN_MODEL
        entry = by_model.setdefault(model, ModelUsage(model=model))
        entry.calls += 1
        entry.input_tokens += usage.input_tokens
        entry.output_tokens += usage.output_tokens
        entry.total_tokens += usage.total_tokens

    summary = UsageSummary(by_model=by_model)
    for entry in by_model.values():
        entry.cost = calculate_cost(TokenUsage(
            input_tokens=entry.input_tokens,
            output_tokens=entry.output_tokens,
            total_tokens=entry.total_tokens,
            model=entry.model,
        ))
        summary.total_tokens += entry.total_tokens
        summary.total.input_cost += entry.cost.input_cost
        summary.total.output_cost += entry.cost.output_cost
        summary.total.total_cost += entry.cost.total_cost
    return summary
