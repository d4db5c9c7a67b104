"""
Consensus panel engine.

Fans a citation out to every member of a panel in parallel, waits for all
of them, and aggregates their votes. A member whose call still fails after
its retry budget contributes an UNCERTAIN vote with reason "api_error";
one bad member never sinks the panel.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from citecheck.citations.models import (
    AgentVerdict,
    Citation,
    Tier2Result,
    Tier3Result,
    Verdict,
)
from citecheck.verification.audit import AuditEvent, get_audit_logger, log_audit_event
from citecheck.verification.consensus import (
    DEFAULT_TIER3_THRESHOLD,
    calculate_tier2_consensus,
    calculate_tier3_consensus,
)
from citecheck.verification.evaluator import Evaluator, RetryPolicy, call_with_retry, is_retryable_error
from citecheck.verification.models import AgentRole
from citecheck.verification.prompts import TIER2_ROLES, TIER3_ROLES
from citecheck.verification.usage import UsageSummary, summarize_usage

API_ERROR_REASON = "api_error"


def _panel_input(citation: Citation, usage: UsageSummary) -> dict:
    return {
        "citation_text": citation.citation_text,
        "type": citation.citation_type.value,
        "total_tokens": usage.total_tokens,
        "cost_usd": round(usage.total.total_cost, 6),
    }


class ConsensusPanel:
    """
    Runs the Tier 2 and Tier 3 panels for a citation.

    Usage:
        panel = ConsensusPanel(evaluator=LLMEvaluator())
        tier2 = panel.run_tier2(citation, context)
        if tier2.consensus.tier_3_trigger:
            tier3 = panel.run_tier3(citation, context, tier2)
    """

    def __init__(
        self,
        evaluator: Evaluator,
        tier3_evaluator: Optional[Evaluator] = None,
        tier2_roles: Optional[List[AgentRole]] = None,
        tier3_roles: Optional[List[AgentRole]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        tier3_threshold: float = DEFAULT_TIER3_THRESHOLD,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the panel.

        Args:
            evaluator: Evaluator for Tier 2 members
            tier3_evaluator: Evaluator for Tier 3 members (defaults to evaluator)
            tier2_roles: Tier 2 roles (defaults to the five standard roles)
            tier3_roles: Tier 3 roles (defaults to the three escalation roles)
            retry_policy: Per-call retry policy
            tier3_threshold: Tier 2 confidence below which Tier 3 is triggered
            sleep: Sleep function used between retries
        """
        self.evaluator = evaluator
        self.tier3_evaluator = tier3_evaluator or evaluator
        self.tier2_roles = tier2_roles or TIER2_ROLES
        self.tier3_roles = tier3_roles or TIER3_ROLES
        self.retry_policy = retry_policy or RetryPolicy()
        self.tier3_threshold = tier3_threshold
        self.sleep = sleep
        self.logger = get_audit_logger("consensus_panel")

    def run_tier2(self, citation: Citation, context: str) -> Tier2Result:
        """
        Evaluate a citation with the five-member panel.

        Args:
            citation: Citation to evaluate
            context: Cleaned surrounding text

        Returns:
            Tier2Result with every member's vote and the consensus
        """
        start = time.perf_counter()
        votes = self._run_panel(self.tier2_roles, self.evaluator, citation, context, None)
        consensus = calculate_tier2_consensus(
            votes,
            tier3_threshold=self.tier3_threshold,
            panel_size=len(self.tier2_roles),
        )

        log_audit_event(self.logger, AuditEvent(
            event_type="tier2_panel",
            citation_id=citation.id,
            input_data=_panel_input(citation, summarize_usage(votes)),
            result=consensus.recommendation.value,
            duration_ms=int((time.perf_counter() - start) * 1000),
            reason=consensus.reasoning if consensus.tier_3_trigger else None,
        ))
        return Tier2Result(panel_evaluation=votes, consensus=consensus)

    def run_tier3(self, citation: Citation, context: str, tier2_result: Tier2Result) -> Tier3Result:
        """
        Evaluate a citation with the three-member escalation panel.

        Args:
            citation: Citation to evaluate
            context: Cleaned surrounding text
            tier2_result: The citation's Tier 2 output, shown to every member

        Returns:
            Tier3Result with every member's vote and the consensus
        """
        start = time.perf_counter()
        votes = self._run_panel(self.tier3_roles, self.tier3_evaluator, citation, context, tier2_result)
        consensus = calculate_tier3_consensus(votes, panel_size=len(self.tier3_roles))

        log_audit_event(self.logger, AuditEvent(
            event_type="tier3_panel",
            citation_id=citation.id,
            input_data=_panel_input(citation, summarize_usage(votes)),
            result=consensus.final_status.value,
            duration_ms=int((time.perf_counter() - start) * 1000),
        ))
        return Tier3Result(panel_evaluation=votes, consensus=consensus)

    def _run_panel(
        self,
        roles: List[AgentRole],
        evaluator: Evaluator,
        citation: Citation,
        context: str,
        prior_panel: Optional[Tier2Result]
    ) -> List[AgentVerdict]:
        """Fan out to every role at once; votes come back in role order."""
        with ThreadPoolExecutor(max_workers=len(roles)) as executor:
            futures = [
                executor.submit(self._evaluate_member, role, evaluator, citation, context, prior_panel)
                for role in roles
            ]
            return [future.result() for future in futures]

    def _evaluate_member(
        self,
        role: AgentRole,
        evaluator: Evaluator,
        citation: Citation,
        context: str,
        prior_panel: Optional[Tier2Result]
    ) -> AgentVerdict:
        def on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            log_audit_event(self.logger, AuditEvent(
                event_type="evaluator_retry",
                citation_id=citation.id,
                input_data={"agent": role.name, "attempt": attempt, "delay_s": round(delay, 2)},
                result="RETRY",
                reason=str(exc),
            ))

        try:
            response = call_with_retry(
                lambda: evaluator.evaluate(role, citation, context, prior_panel),
                self.retry_policy,
                sleep=self.sleep,
                on_retry=on_retry,
            )
        except Exception as exc:
            log_audit_event(self.logger, AuditEvent(
                event_type="evaluator_exhausted",
                citation_id=citation.id,
                input_data={"agent": role.name, "retryable": is_retryable_error(exc)},
                result="EXHAUSTED",
                reason=f"{type(exc).__name__}: {exc}",
            ))
            return AgentVerdict(agent=role.name, verdict=Verdict.UNCERTAIN, reason_code=API_ERROR_REASON)

        return AgentVerdict(
            agent=role.name,
            verdict=response.verdict,
            reason_code=response.reason_code,
            model=response.model,
            token_usage=response.token_usage,
        )
