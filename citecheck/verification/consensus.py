"""
Consensus math for the Tier 2 and Tier 3 panels.

Both functions are pure: they take the full list of votes and build a new
consensus object. A consensus is never patched, only recomputed.
"""

from typing import List

from citecheck.citations.models import (
    AgentVerdict,
    AgreementLevel,
    FinalStatus,
    Recommendation,
    Tier2Consensus,
    Tier3Consensus,
    Verdict,
    VerdictCounts,
)

TIER2_PANEL_SIZE = 5
TIER3_PANEL_SIZE = 3

DEFAULT_TIER3_THRESHOLD = 0.8

# VALID votes needed for each Tier 2 recommendation
LIKELY_VALID_MIN_VOTES = 4
UNCERTAIN_MIN_VOTES = 2


def count_verdicts(evaluations: List[AgentVerdict]) -> VerdictCounts:
    counts = VerdictCounts()
    for evaluation in evaluations:
        setattr(counts, evaluation.verdict.value, getattr(counts, evaluation.verdict.value) + 1)
    return counts


def _concerns(evaluations: List[AgentVerdict]) -> str:
    return "; ".join(
        f"{e.agent}: {e.reason_code or e.verdict.value.lower()}"
        for e in evaluations
        if e.verdict != Verdict.VALID
    )


def calculate_tier2_consensus(
    evaluations: List[AgentVerdict],
    tier3_threshold: float = DEFAULT_TIER3_THRESHOLD,
    panel_size: int = TIER2_PANEL_SIZE
) -> Tier2Consensus:
    """
    Aggregate the five Tier 2 votes.

    - agreement: unanimous (5/5), strong (4/5), else split
    - confidence: largest verdict count / panel size
    - recommendation: >= 4 VALID likely valid, 2-3 uncertain, <= 1 hallucinated
    - escalate to Tier 3 when confidence < tier3_threshold

    Args:
        evaluations: One vote per panel member
        tier3_threshold: Escalation threshold
        panel_size: Expected panel size

    Returns:
        Tier2Consensus
    """
    counts = count_verdicts(evaluations)
    panel_size = max(panel_size, len(evaluations))
    top = counts.max_count

    if top == panel_size:
        agreement = AgreementLevel.UNANIMOUS
    elif top == panel_size - 1:
        agreement = AgreementLevel.STRONG
    else:
        agreement = AgreementLevel.SPLIT

    confidence = top / panel_size if panel_size else 0.0
    concerns = _concerns(evaluations)

    if counts.VALID >= LIKELY_VALID_MIN_VOTES:
        recommendation = Recommendation.CITATION_LIKELY_VALID
        if counts.VALID == panel_size:
            reasoning = f"All agents ({counts.VALID}/{panel_size}) found no issues with this citation."
        else:
            reasoning = f"{counts.VALID}/{panel_size} agents found no issues. Concerns: {concerns}"
    elif counts.VALID >= UNCERTAIN_MIN_VOTES:
        recommendation = Recommendation.CITATION_UNCERTAIN
        reasoning = (
            f"Panel disagreement: {counts.VALID} VALID, {counts.INVALID} INVALID, "
            f"{counts.UNCERTAIN} UNCERTAIN. Concerns: {concerns}"
        )
    else:
        recommendation = Recommendation.CITATION_LIKELY_HALLUCINATED
        reasoning = (
            f"Majority finding against validity ({panel_size - counts.VALID}/{panel_size} agents). "
            f"Concerns: {concerns}"
        )

    return Tier2Consensus(
        agreement_level=agreement,
        verdict_counts=counts,
        confidence_score=confidence,
        recommendation=recommendation,
        reasoning=reasoning,
        tier_3_trigger=confidence < tier3_threshold,
    )


def calculate_tier3_consensus(
    evaluations: List[AgentVerdict],
    panel_size: int = TIER3_PANEL_SIZE
) -> Tier3Consensus:
    """
    Aggregate the three Tier 3 votes.

    final_status is VALID for 3/3 VALID, WARN for 2/3, FAIL otherwise;
    confidence is the largest verdict count / panel size.
    """
    counts = count_verdicts(evaluations)
    panel_size = max(panel_size, len(evaluations))
    concerns = _concerns(evaluations)

    if counts.VALID == panel_size:
        status = FinalStatus.VALID
        reasoning = f"Escalation panel unanimous ({counts.VALID}/{panel_size}) that the citation is plausible."
    elif counts.VALID == panel_size - 1:
        status = FinalStatus.WARN
        reasoning = f"Escalation panel mostly satisfied ({counts.VALID}/{panel_size} VALID). Concerns: {concerns}"
    else:
        status = FinalStatus.FAIL
        reasoning = f"Escalation panel did not support the citation ({counts.VALID}/{panel_size} VALID). Concerns: {concerns}"

    return Tier3Consensus(
        final_status=status,
        verdict_counts=counts,
        confidence_score=counts.max_count / panel_size if panel_size else 0.0,
        reasoning=reasoning,
    )
