"""
Pydantic models for citation documents.

Provides data structures for:
- Citation documents (paragraphs + citation records)
- Raw pattern matches produced during identification
- Tier 1 format results
- Tier 2 / Tier 3 panel results stored back on each citation
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class CitationType(str, Enum):
    """Structural citation types recognised by the pattern matcher."""
    CASE = "case"
    STATUTE = "statute"
    REGULATION = "regulation"
    RULE = "rule"


class ValidationTier(str, Enum):
    """Queue tiers; each maps to one result field on a Citation."""
    TIER2 = "tier2"
    TIER3 = "tier3"


class Tier1Status(str, Enum):
    """Format validation outcomes."""
    VALID_FORMAT = "VALID_FORMAT"
    INVALID_FORMAT = "INVALID_FORMAT"
    AMBIGUOUS_FORMAT = "AMBIGUOUS_FORMAT"


class Verdict(str, Enum):
    """Constrained vocabulary returned by every evaluator agent."""
    VALID = "VALID"
    INVALID = "INVALID"
    UNCERTAIN = "UNCERTAIN"


class AgreementLevel(str, Enum):
    """How strongly a panel agreed on its majority verdict."""
    UNANIMOUS = "unanimous"
    STRONG = "strong"
    SPLIT = "split"


class Recommendation(str, Enum):
    """Tier 2 recommendation derived from the VALID vote count."""
    CITATION_LIKELY_VALID = "CITATION_LIKELY_VALID"
    CITATION_UNCERTAIN = "CITATION_UNCERTAIN"
    CITATION_LIKELY_HALLUCINATED = "CITATION_LIKELY_HALLUCINATED"


class FinalStatus(str, Enum):
    """Tier 3 final status."""
    VALID = "VALID"
    WARN = "WARN"
    FAIL = "FAIL"


class CitationMatch(BaseModel):
    """A raw candidate located in a paragraph, before ids are assigned."""
    full_match: str = Field(description="Exact matched substring")
    start_index: int = Field(ge=0, description="Start offset within the paragraph text")
    end_index: int = Field(ge=0, description="End offset (exclusive) within the paragraph text")
    citation_type: CitationType = Field(description="Structural type of the candidate")
    components: dict[str, str] = Field(
        default_factory=dict,
        description="Type-specific raw components (volume, reporter, code, section, ...)"
    )

    @property
    def length(self) -> int:
        return self.end_index - self.start_index

    def overlaps(self, other: "CitationMatch") -> bool:
        return self.start_index < other.end_index and other.start_index < self.end_index


class Tier1Result(BaseModel):
    """Result of structural format validation."""
    status: Tier1Status = Field(description="Format validation status")
    confidence: float = Field(ge=0.0, le=1.0, description="Structural confidence")


class TokenUsage(BaseModel):
    """Tokens consumed by one evaluator call."""
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    model: Optional[str] = Field(default=None, description="Model that was billed")


class AgentVerdict(BaseModel):
    """One evaluator agent's vote."""
    agent: str = Field(description="Agent role name")
    verdict: Verdict = Field(description="VALID, INVALID or UNCERTAIN")
    reason_code: Optional[str] = Field(
        default=None,
        description="Categorical reason (e.g. 'reporter_court_mismatch', 'api_error')"
    )
    model: Optional[str] = Field(default=None, description="Model that produced the vote")
    token_usage: Optional[TokenUsage] = Field(
        default=None,
        description="Provider-reported usage; None when the call failed or nothing was reported"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC time the vote was recorded"
    )


class VerdictCounts(BaseModel):
    """Vote tally for a panel."""
    VALID: int = Field(default=0, ge=0)
    INVALID: int = Field(default=0, ge=0)
    UNCERTAIN: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.VALID + self.INVALID + self.UNCERTAIN

    @property
    def max_count(self) -> int:
        return max(self.VALID, self.INVALID, self.UNCERTAIN)


class Tier2Consensus(BaseModel):
    """Aggregate of the five-member Tier 2 panel."""
    agreement_level: AgreementLevel
    verdict_counts: VerdictCounts
    confidence_score: float = Field(ge=0.0, le=1.0)
    recommendation: Recommendation
    reasoning: str
    tier_3_trigger: bool = Field(description="True when the citation must escalate to Tier 3")


class Tier2Result(BaseModel):
    """Tier 2 panel output stored on the citation's ``validation`` field."""
    panel_evaluation: list[AgentVerdict]
    consensus: Tier2Consensus


class Tier3Consensus(BaseModel):
    """Aggregate of the three-member escalation panel."""
    final_status: FinalStatus
    verdict_counts: VerdictCounts
    confidence_score: float = Field(ge=0.0, le=1.0)
    reasoning: str


class Tier3Result(BaseModel):
    """Tier 3 panel output stored on the citation's ``tier_3`` field."""
    panel_evaluation: list[AgentVerdict]
    consensus: Tier3Consensus


class Citation(BaseModel):
    """A canonical citation record owned by a document."""
    id: str = Field(description="Stable citation id (e.g. 'cit_001')")
    citation_text: str = Field(description="Canonical matched text")
    citation_type: CitationType
    extracted_components: dict[str, Any] = Field(default_factory=dict)
    tier_1: Tier1Result
    validation: Optional[Tier2Result] = Field(
        default=None,
        description="Tier 2 panel result, empty until processed"
    )
    tier_3: Optional[Tier3Result] = Field(
        default=None,
        description="Tier 3 panel result, empty unless escalated"
    )

    def has_result(self, tier: ValidationTier) -> bool:
        if tier == ValidationTier.TIER2:
            return self.validation is not None
        return self.tier_3 is not None

    @property
    def needs_tier3(self) -> bool:
        return self.validation is not None and self.validation.consensus.tier_3_trigger


class ContentParagraph(BaseModel):
    """One block of document text; may contain citation markers."""
    id: str = Field(description="Opaque paragraph id")
    type: Literal["paragraph", "heading", "section"] = "paragraph"
    level: Optional[int] = Field(default=None, description="Heading level, if a heading")
    text: str = ""


class DocumentMetadata(BaseModel):
    """Descriptive metadata carried with a citation document."""
    filename: Optional[str] = None
    total_citations: int = Field(default=0, ge=0)
    identification_method: Optional[Literal["custom", "eyecite"]] = None
    identified_at: Optional[datetime] = None


class CitationDocument(BaseModel):
    """Ordered paragraphs plus the citation records their markers reference."""
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    content: list[ContentParagraph] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)

    def get_citation(self, citation_id: str) -> Optional[Citation]:
        for citation in self.citations:
            if citation.id == citation_id:
                return citation
        return None

    def get_paragraph(self, paragraph_id: str) -> Optional[ContentParagraph]:
        for paragraph in self.content:
            if paragraph.id == paragraph_id:
                return paragraph
        return None
