"""
Evaluator role definitions and prompt templates.

Each role is independently scoped: it looks at one dimension of a citation
and answers in a constrained vocabulary (VALID / INVALID <code> /
UNCERTAIN <code>). Templates are rendered with LangChain's
ChatPromptTemplate, so literal braces must not appear in them.

Usage:
    from citecheck.verification.prompts import TIER2_ROLES, format_components

    role = TIER2_ROLES[0]
    role.prompt_template  # text with {citation_text}, {components}, {context}
"""

from typing import List, Mapping

from citecheck.citations.models import Tier2Result
from citecheck.verification.models import AgentRole, PanelTier


CITATION_BLOCK = """
Citation: {citation_text}
Citation Type: {citation_type}
Components:
{components}

Surrounding text from the document:
\"\"\"{context}\"\"\"
"""


SCOPE_REMINDER = """
You are assessing whether this citation COULD plausibly be a real authority as
written, not whether you can personally verify that it exists. Do not research,
do not invent facts, and stay within your assigned dimension.
"""


def _response_instructions(invalid_reasons: List[str], uncertain_reasons: List[str]) -> str:
    invalid = "\n".join(f"- {code}" for code in invalid_reasons)
    uncertain = "\n".join(f"- {code}" for code in uncertain_reasons)
    return f"""
Respond with EXACTLY one line, in one of these forms:
VALID
INVALID <reason_code>
UNCERTAIN <reason_code>

If INVALID, use one of these reason codes:
{invalid}

If UNCERTAIN, use one of these reason codes:
{uncertain}
"""


def _role(
    name: str,
    tier: PanelTier,
    focus: str,
    instructions: str,
    invalid_reasons: List[str],
    uncertain_reasons: List[str],
) -> AgentRole:
    template = (
        instructions.strip()
        + "\n"
        + CITATION_BLOCK
        + ("\nTier 2 panel findings:\n{tier2_summary}\n" if tier == PanelTier.TIER3 else "")
        + SCOPE_REMINDER
        + _response_instructions(invalid_reasons, uncertain_reasons)
    )
    return AgentRole(
        name=name,
        tier=tier,
        focus=focus,
        prompt_template=template,
        invalid_reasons=invalid_reasons,
        uncertain_reasons=uncertain_reasons,
    )


# =============================================================================
# TIER 2: five-member consensus panel
# =============================================================================

AUTHORITY_METADATA_ROLE = _role(
    name="authority_metadata_agent",
    tier=PanelTier.TIER2,
    focus="Court, reporter, volume, page and year alignment",
    instructions="""You are a legal citation authority validator. Assess whether this
citation's court, reporter and publication details are plausible.

Check:
- Are decisions of this court published in this reporter?
- Are the volume and page numbers within realistic ranges for the reporter?
- Was the reporter in use in the cited year?
- For statutes, regulations and rules: does the title/section structure fit the code?""",
    invalid_reasons=[
        "reporter_court_mismatch",
        "volume_impossible",
        "page_unreasonable",
        "reporter_timing_wrong",
        "year_implausible",
    ],
    uncertain_reasons=["unusual_volume_page", "reporter_edge_case", "timing_questionable"],
)

PARTY_ECOLOGY_ROLE = _role(
    name="party_ecology_agent",
    tier=PanelTier.TIER2,
    focus="Party names and litigation plausibility",
    instructions="""You are a case ecology validator. Assess whether the parties and the
kind of dispute implied by this citation fit together and fit the forum.

Check:
- Could these parties plausibly litigate against each other in this court?
- Do entity types (government, corporation, individual) fit their roles?
- Does the surrounding text describe a case consistent with these parties?""",
    invalid_reasons=[
        "case_type_implausible",
        "characteristics_mismatch",
        "party_role_impossible",
        "entity_type_impossible",
    ],
    uncertain_reasons=["names_generic_but_possible", "unusual_pairing", "characteristics_unclear"],
)

TEMPORAL_ROLE = _role(
    name="temporal_plausibility_agent",
    tier=PanelTier.TIER2,
    focus="Timeline and historical consistency",
    instructions="""You are a temporal reality validator. Assess whether the dates implied
by this citation are historically consistent.

Check:
- Is the year possible for this court and reporter series?
- Does the surrounding text attribute to it a holding that postdates the year?
- Is the citation dated in the future?""",
    invalid_reasons=[
        "temporal_impossibility",
        "anachronistic_issue",
        "historical_mismatch",
        "future_dated",
    ],
    uncertain_reasons=[
        "early_in_reporter_series",
        "edge_of_legal_development",
        "timing_unusual_but_possible",
    ],
)

DOCTRINAL_FIT_ROLE = _role(
    name="doctrinal_fit_agent",
    tier=PanelTier.TIER2,
    focus="Broad legal-knowledge and doctrinal fit",
    instructions="""You are a legal knowledge validator. Assess whether the proposition the
document attributes to this authority is consistent with general legal knowledge.

Check:
- Is the authority one a practitioner would recognise for this proposition?
- Is the doctrine described possible in this jurisdiction?
- Does the document use the authority for something it could not stand for?""",
    invalid_reasons=[
        "inconsistent_with_knowledge",
        "unknown_authority",
        "doctrine_impossible",
        "jurisdiction_mismatch",
    ],
    uncertain_reasons=["unfamiliar_but_possible", "edge_case_authority"],
)

CONTRADICTION_ROLE = _role(
    name="contradiction_check_agent",
    tier=PanelTier.TIER2,
    focus="Cross-dimensional contradictions",
    instructions="""You are a reality assessment expert. Look for contradictions between the
citation's dimensions: court vs reporter vs year vs parties vs the proposition
it is cited for. Individually plausible parts can still be jointly impossible.""",
    invalid_reasons=[
        "cross_dimension_contradiction",
        "structural_incoherence",
        "authority_category_mismatch",
        "impossible_combination",
    ],
    uncertain_reasons=[
        "weak_signals_both_ways",
        "mixed_signals",
        "insufficient_evidence",
        "unusual_but_not_invalid",
    ],
)

TIER2_ROLES: List[AgentRole] = [
    AUTHORITY_METADATA_ROLE,
    PARTY_ECOLOGY_ROLE,
    TEMPORAL_ROLE,
    DOCTRINAL_FIT_ROLE,
    CONTRADICTION_ROLE,
]


# =============================================================================
# TIER 3: three-member escalation panel
# =============================================================================

TIER3_INVALID_REASONS = ["fabrication_likely", "pattern_inconsistent", "research_contradiction"]
TIER3_UNCERTAIN_REASONS = ["needs_human_review", "conflicting_panel_signals", "insufficient_evidence"]

PRACTITIONER_ROLE = _role(
    name="practitioner_review_agent",
    tier=PanelTier.TIER3,
    focus="Practitioner plausibility review",
    instructions="""You are an experienced litigator reviewing a citation that a first-pass
panel could not agree on. Judge whether a careful practitioner would accept
this citation in a filing as written, taking the panel's concerns into account.""",
    invalid_reasons=TIER3_INVALID_REASONS,
    uncertain_reasons=TIER3_UNCERTAIN_REASONS,
)

RESEARCH_ROLE = _role(
    name="research_review_agent",
    tier=PanelTier.TIER3,
    focus="Research-correctness review",
    instructions="""You are a legal research specialist reviewing a citation that a first-pass
panel could not agree on. Judge whether the citation's form and the proposition
it supports are what correct legal research would produce.""",
    invalid_reasons=TIER3_INVALID_REASONS,
    uncertain_reasons=TIER3_UNCERTAIN_REASONS,
)

JUDICIAL_PATTERN_ROLE = _role(
    name="judicial_pattern_agent",
    tier=PanelTier.TIER3,
    focus="Judicial-pattern review",
    instructions="""You are a former judicial clerk reviewing a citation that a first-pass
panel could not agree on. Judge whether the citation matches the patterns of
real opinions, codes and rules: naming, numbering, court practice and timing.""",
    invalid_reasons=TIER3_INVALID_REASONS,
    uncertain_reasons=TIER3_UNCERTAIN_REASONS,
)

TIER3_ROLES: List[AgentRole] = [
    PRACTITIONER_ROLE,
    RESEARCH_ROLE,
    JUDICIAL_PATTERN_ROLE,
]


def known_reason_codes() -> List[str]:
    """Every reason code any role may return."""
    codes: List[str] = []
    for role in TIER2_ROLES + TIER3_ROLES:
        for code in role.invalid_reasons + role.uncertain_reasons:
            if code not in codes:
                codes.append(code)
    return codes


def format_components(components: Mapping[str, object]) -> str:
    """Render extracted components as a bullet list for the prompt."""
    if not components:
        return "- (none extracted; see citation text)"
    return "\n".join(
        f"- {key.replace('_', ' ').title()}: {value}"
        for key, value in components.items()
        if value not in (None, "")
    )


def format_tier2_summary(result: Tier2Result) -> str:
    """Render a Tier 2 result for Tier 3 prompts."""
    lines = [
        f"- {vote.agent}: {vote.verdict.value}" + (f" ({vote.reason_code})" if vote.reason_code else "")
        for vote in result.panel_evaluation
    ]
    consensus = result.consensus
    lines.append(
        f"Consensus: {consensus.recommendation.value}, agreement {consensus.agreement_level.value}, "
        f"confidence {consensus.confidence_score:.2f}"
    )
    return "\n".join(lines)
