"""
Tests for Tier 2 and Tier 3 consensus math.
"""

import pytest

from citecheck.citations.models import (
    AgentVerdict,
    AgreementLevel,
    FinalStatus,
    Recommendation,
    Verdict,
)
from citecheck.verification.consensus import calculate_tier2_consensus, calculate_tier3_consensus


def votes(valid=0, invalid=0, uncertain=0):
    verdicts = [Verdict.VALID] * valid + [Verdict.INVALID] * invalid + [Verdict.UNCERTAIN] * uncertain
    return [
        AgentVerdict(
            agent=f"agent_{index}",
            verdict=verdict,
            reason_code=None if verdict == Verdict.VALID else "mixed_signals",
        )
        for index, verdict in enumerate(verdicts)
    ]


class TestTier2Consensus:
    """Test agreement, confidence, recommendation and escalation."""

    @pytest.mark.parametrize(
        "valid, invalid, uncertain, agreement, confidence, recommendation, trigger",
        [
            (5, 0, 0, AgreementLevel.UNANIMOUS, 1.0, Recommendation.CITATION_LIKELY_VALID, False),
            (4, 1, 0, AgreementLevel.STRONG, 0.8, Recommendation.CITATION_LIKELY_VALID, False),
            (3, 2, 0, AgreementLevel.SPLIT, 0.6, Recommendation.CITATION_UNCERTAIN, True),
            (2, 3, 0, AgreementLevel.SPLIT, 0.6, Recommendation.CITATION_UNCERTAIN, True),
            (2, 2, 1, AgreementLevel.SPLIT, 0.4, Recommendation.CITATION_UNCERTAIN, True),
            (1, 4, 0, AgreementLevel.STRONG, 0.8, Recommendation.CITATION_LIKELY_HALLUCINATED, False),
            (0, 0, 5, AgreementLevel.UNANIMOUS, 1.0, Recommendation.CITATION_LIKELY_HALLUCINATED, False),
        ],
    )
    def test_vote_distributions(self, valid, invalid, uncertain, agreement, confidence, recommendation, trigger):
        consensus = calculate_tier2_consensus(votes(valid, invalid, uncertain))

        assert consensus.agreement_level == agreement
        assert consensus.confidence_score == pytest.approx(confidence)
        assert consensus.recommendation == recommendation
        assert consensus.tier_3_trigger is trigger

    def test_counts_and_reasoning(self):
        consensus = calculate_tier2_consensus(votes(valid=3, invalid=1, uncertain=1))

        assert consensus.verdict_counts.VALID == 3
        assert consensus.verdict_counts.total == 5
        assert "agent_3: mixed_signals" in consensus.reasoning

    def test_custom_threshold(self):
        """A stricter threshold escalates strong agreement too."""
        consensus = calculate_tier2_consensus(votes(valid=4, invalid=1), tier3_threshold=0.9)
        assert consensus.tier_3_trigger

    def test_short_panel_scored_against_full_size(self):
        """Missing votes never inflate confidence."""
        consensus = calculate_tier2_consensus(votes(valid=3))
        assert consensus.confidence_score == pytest.approx(0.6)


class TestTier3Consensus:
    """Test the escalation panel's final status."""

    @pytest.mark.parametrize(
        "valid, invalid, uncertain, status, confidence",
        [
            (3, 0, 0, FinalStatus.VALID, 1.0),
            (2, 1, 0, FinalStatus.WARN, 2 / 3),
            (2, 0, 1, FinalStatus.WARN, 2 / 3),
            (1, 2, 0, FinalStatus.FAIL, 2 / 3),
            (1, 1, 1, FinalStatus.FAIL, 1 / 3),
            (0, 3, 0, FinalStatus.FAIL, 1.0),
        ],
    )
    def test_vote_distributions(self, valid, invalid, uncertain, status, confidence):
        consensus = calculate_tier3_consensus(votes(valid, invalid, uncertain))

        assert consensus.final_status == status
        assert consensus.confidence_score == pytest.approx(confidence)
