"""
Citation identification module for citecheck.

Provides pattern matching, eyecite-backed hybrid extraction, normalization
into a canonical citation set, inline markers, context extraction and
Tier 1 format validation.
"""

from citecheck.citations.models import (
    CitationType,
    ValidationTier,
    Tier1Status,
    Verdict,
    AgreementLevel,
    Recommendation,
    FinalStatus,
    CitationMatch,
    Tier1Result,
    TokenUsage,
    AgentVerdict,
    VerdictCounts,
    Tier2Consensus,
    Tier2Result,
    Tier3Consensus,
    Tier3Result,
    Citation,
    ContentParagraph,
    DocumentMetadata,
    CitationDocument,
)
from citecheck.citations.lookup_tables import CitationLookupTables, get_lookup_tables
from citecheck.citations.patterns import (
    PatternMatcher,
    find_all_citations,
    resolve_overlaps,
    is_reference_citation,
)
from citecheck.citations.eyecite_adapter import (
    EyeciteExtractor,
    ExtractedCaseCitation,
    HybridCitationFinder,
    find_citation_span,
)
from citecheck.citations.format_validator import FormatValidator, validate_format
from citecheck.citations.markers import (
    strip_markers,
    insert_markers,
    repair_citation_region,
    clean_marker_residue,
)
from citecheck.citations.normalizer import (
    CitationIdentifier,
    identify_citations,
    reidentify_paragraph,
    normalization_key,
)
from citecheck.citations.context import ContextExtractor, extract_context
from citecheck.citations.comparison import ComparisonResult, compare_identifications

__all__ = [
    # Enums
    "CitationType",
    "ValidationTier",
    "Tier1Status",
    "Verdict",
    "AgreementLevel",
    "Recommendation",
    "FinalStatus",
    # Document models
    "CitationMatch",
    "Citation",
    "ContentParagraph",
    "DocumentMetadata",
    "CitationDocument",
    # Result models
    "Tier1Result",
    "TokenUsage",
    "AgentVerdict",
    "VerdictCounts",
    "Tier2Consensus",
    "Tier2Result",
    "Tier3Consensus",
    "Tier3Result",
    # Lookup tables
    "CitationLookupTables",
    "get_lookup_tables",
    # Pattern matching
    "PatternMatcher",
    "find_all_citations",
    "resolve_overlaps",
    "is_reference_citation",
    # Hybrid extraction
    "EyeciteExtractor",
    "ExtractedCaseCitation",
    "HybridCitationFinder",
    "find_citation_span",
    # Tier 1
    "FormatValidator",
    "validate_format",
    # Markers
    "strip_markers",
    "insert_markers",
    "repair_citation_region",
    "clean_marker_residue",
    # Normalization
    "CitationIdentifier",
    "identify_citations",
    "reidentify_paragraph",
    "normalization_key",
    # Context
    "ContextExtractor",
    "extract_context",
    # Comparison
    "ComparisonResult",
    "compare_identifications",
]
