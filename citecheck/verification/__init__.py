"""
Verification module for citecheck.

Provides the Tier 2 / Tier 3 consensus panel engine: evaluator roles and
prompts, the evaluator capability with its retry policy, response parsing,
consensus math, and audit logging.
"""

from citecheck.verification.audit import (
    get_audit_logger,
    configure_audit_logging,
    AuditEvent,
    log_audit_event,
)
from citecheck.verification.models import AgentRole, EvaluatorResponse, PanelTier
from citecheck.verification.prompts import TIER2_ROLES, TIER3_ROLES
from citecheck.verification.response_parser import ParsedVerdict, parse_agent_response
from citecheck.verification.evaluator import (
    Evaluator,
    LLMEvaluator,
    RetryPolicy,
    call_with_retry,
    is_retryable_error,
)
from citecheck.verification.consensus import calculate_tier2_consensus, calculate_tier3_consensus
from citecheck.verification.panel import ConsensusPanel

__all__ = [
    # Audit logging
    "get_audit_logger",
    "configure_audit_logging",
    "AuditEvent",
    "log_audit_event",
    # Roles
    "AgentRole",
    "PanelTier",
    "TIER2_ROLES",
    "TIER3_ROLES",
    # Evaluator capability
    "Evaluator",
    "EvaluatorResponse",
    "LLMEvaluator",
    "RetryPolicy",
    "call_with_retry",
    "is_retryable_error",
    # Parsing
    "ParsedVerdict",
    "parse_agent_response",
    # Consensus
    "calculate_tier2_consensus",
    "calculate_tier3_consensus",
    "ConsensusPanel",
]
