"""
Pydantic models for the consensus panel engine.

Provides data structures for:
- Evaluator roles (name, tier, prompt template, allowed reason codes)
- Evaluator responses (parsed verdict, reason code and token usage)
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from citecheck.citations.models import TokenUsage, Verdict


class PanelTier(str, Enum):
    """Which panel a role sits on."""
    TIER2 = "tier2"
    TIER3 = "tier3"


class AgentRole(BaseModel):
    """An independently scoped evaluator role."""
    name: str = Field(description="Stable role identifier recorded on every vote")
    tier: PanelTier = Field(description="Panel the role belongs to")
    focus: str = Field(description="One-line description of what the role checks")
    prompt_template: str = Field(
        description="ChatPromptTemplate text; variables: citation_text, citation_type, "
                    "components, context and (Tier 3) tier2_summary"
    )
    invalid_reasons: List[str] = Field(default_factory=list, description="Allowed INVALID reason codes")
    uncertain_reasons: List[str] = Field(default_factory=list, description="Allowed UNCERTAIN reason codes")


class EvaluatorResponse(BaseModel):
    """One evaluator's parsed answer."""
    verdict: Verdict = Field(description="VALID, INVALID or UNCERTAIN")
    reason_code: Optional[str] = Field(default=None, description="Categorical reason code")
    raw_text: Optional[str] = Field(default=None, description="Unparsed model output")
    model: Optional[str] = Field(default=None, description="Model that produced the answer")
    token_usage: Optional[TokenUsage] = Field(default=None, description="Tokens reported for the call")
