"""
Evaluator capability and retry policy.

An evaluator answers one role's question about one citation. The default
implementation renders the role's prompt with LangChain and sends it to an
OpenAI chat model; tests and alternative backends plug in anything that
satisfies the Evaluator protocol.

Failures are classified before retrying:
- retryable: rate limits, timeouts, connection errors, 5xx
- terminal: other 4xx (auth, bad request), and unexpected errors
"""

import random
import time
from typing import Callable, Dict, Optional, Protocol, TypeVar

import openai
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from citecheck.citations.models import Citation, Tier2Result
from citecheck.exceptions import EvaluatorError
from citecheck.verification.models import AgentRole, EvaluatorResponse, PanelTier
from citecheck.verification.prompts import format_components, format_tier2_summary
from citecheck.verification.response_parser import parse_agent_response
from citecheck.verification.usage import extract_token_usage

T = TypeVar("T")

# HTTP statuses below 500 that are still worth retrying
RETRYABLE_STATUS_CODES = {408, 409, 429}


class Evaluator(Protocol):
    """Pluggable evaluator capability."""

    def evaluate(
        self,
        role: AgentRole,
        citation: Citation,
        context: str,
        prior_panel: Optional[Tier2Result] = None
    ) -> EvaluatorResponse:
        ...


def is_retryable_error(exc: BaseException) -> bool:
    """
    Decide whether an evaluator failure is worth retrying.

    Args:
        exc: Exception raised by an evaluator call

    Returns:
        True for transient failures (429, 5xx, timeouts, connection errors)
    """
    if isinstance(exc, EvaluatorError):
        return exc.retryable
    if isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code in RETRYABLE_STATUS_CODES or exc.status_code >= 500
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return False


class RetryPolicy(BaseModel):
    """Exponential backoff with jitter for a single evaluator call."""
    max_attempts: int = Field(default=3, ge=1, description="Total attempts, including the first")
    base_delay: float = Field(default=1.0, ge=0.0, description="Delay before the second attempt (seconds)")
    factor: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")
    max_delay: float = Field(default=10.0, ge=0.0, description="Upper bound on any delay (seconds)")
    jitter: bool = Field(default=True, description="Randomize delays to avoid synchronized retries")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = self.base_delay * (self.factor ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(1.0, 2.0)
        return min(self.max_delay, delay)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None
) -> T:
    """
    Call fn, retrying retryable failures per policy.

    Args:
        fn: Zero-argument callable
        policy: Attempt cap and backoff settings
        sleep: Sleep function (injectable for tests)
        on_retry: Called with (attempt, exception, delay) before each retry

    Returns:
        fn's return value

    Raises:
        The last exception, once it is terminal or attempts are exhausted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if not is_retryable_error(exc) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            if on_retry:
                on_retry(attempt, exc, delay)
            sleep(delay)


class LLMEvaluator:
    """
    Evaluator backed by a LangChain chat model.

    Usage:
        evaluator = LLMEvaluator(model="gpt-4o-mini")
        response = evaluator.evaluate(TIER2_ROLES[0], citation, context)
        response.verdict  # Verdict.VALID
    """

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        api_key: Optional[str] = None
    ):
        """
        Initialize the evaluator.

        Args:
            llm: Chat model to use. If None, creates a ChatOpenAI client with
                 its own retries disabled (RetryPolicy owns retrying).
            model: Model name recorded on every vote
            timeout: Request timeout in seconds
            api_key: Provider API key; falls back to OPENAI_API_KEY
        """
        self.model = model
        if llm is None:
            options = {"model": model, "temperature": 0, "max_retries": 0, "timeout": timeout}
            if api_key:
                options["api_key"] = api_key
            llm = ChatOpenAI(**options)
        self.llm = llm
        self._prompts: Dict[str, ChatPromptTemplate] = {}
        self._parser = StrOutputParser()

    def _prompt_for(self, role: AgentRole) -> ChatPromptTemplate:
        if role.name not in self._prompts:
            self._prompts[role.name] = ChatPromptTemplate.from_template(role.prompt_template)
        return self._prompts[role.name]

    def evaluate(
        self,
        role: AgentRole,
        citation: Citation,
        context: str,
        prior_panel: Optional[Tier2Result] = None
    ) -> EvaluatorResponse:
        variables = {
            "citation_text": citation.citation_text,
            "citation_type": citation.citation_type.value,
            "components": format_components(citation.extracted_components),
            "context": context or "(no surrounding text available)",
        }
        if role.tier == PanelTier.TIER3:
            variables["tier2_summary"] = (
                format_tier2_summary(prior_panel) if prior_panel else "(Tier 2 result not available)"
            )

        chain = self._prompt_for(role) | self.llm
        message = chain.invoke(variables)
        text = self._parser.invoke(message)
        parsed = parse_agent_response(text)

        return EvaluatorResponse(
            verdict=parsed.verdict,
            reason_code=parsed.reason_code,
            raw_text=text,
            model=self.model,
            token_usage=extract_token_usage(message, self.model),
        )
