"""
Hybrid citation identification: eyecite for cases, custom patterns for the rest.

eyecite returns typed citation objects whose spans are approximate with
respect to the text we mark up (it anchors on the "vol reporter page" core).
This adapter recovers exact spans in the paragraph text, widens each case
citation to include its parties and parenthetical, and merges the result
with the custom statute/regulation/rule scanners.
"""

import logging
import re
from typing import List, Optional, Protocol, Tuple

from eyecite import get_citations
from pydantic import BaseModel, Field

from citecheck.citations.models import CitationMatch, CitationType
from citecheck.citations.patterns import PatternMatcher, is_reference_citation

logger = logging.getLogger(__name__)

# Custom case matches starting this close to an eyecite case are duplicates
CASE_PRECEDENCE_CHARS = 10

# How far back from the reporter core to look for the party names
PARTY_LOOKBACK_CHARS = 250

_TAIL_PATTERN = re.compile(r"(?:,\s*(?P<pin_cite>\d+(?:-\d+)?))?(?:\s+\((?P<court>[^()]*?)\s*(?P<year>\d{4})\))?")

# eyecite class name -> citation kind
EYECITE_KINDS = {
    "FullCaseCitation": "full_case",
    "ShortCaseCitation": "short_case",
    "IdCitation": "id",
    "SupraCitation": "supra",
    "ReferenceCitation": "reference",
    "FullLawCitation": "law",
    "FullJournalCitation": "journal",
    "UnknownCitation": "unknown",
}

REFERENCE_KINDS = {"short_case", "id", "supra", "reference"}


class ExtractedCaseCitation(BaseModel):
    """A citation as reported by an external extractor."""
    kind: str = Field(description="full_case, short_case, id, supra, reference, law, ...")
    matched_text: str = Field(description="Core text the extractor anchored on")
    span: Tuple[int, int] = Field(description="Approximate (start, end) in the source text")
    volume: Optional[str] = None
    reporter: Optional[str] = None
    page: Optional[str] = None
    plaintiff: Optional[str] = None
    defendant: Optional[str] = None
    court: Optional[str] = None
    year: Optional[str] = None
    pin_cite: Optional[str] = None


class CaseCitationExtractor(Protocol):
    """Anything that turns text into ExtractedCaseCitation objects."""

    def extract(self, text: str) -> List[ExtractedCaseCitation]:
        ...


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(str(value).split())
    return value or None


class EyeciteExtractor:
    """CaseCitationExtractor backed by eyecite.get_citations."""

    def extract(self, text: str) -> List[ExtractedCaseCitation]:
        extracted = []
        for cite in get_citations(text):
            kind = EYECITE_KINDS.get(type(cite).__name__, "unknown")
            groups = getattr(cite, "groups", None) or {}
            metadata = getattr(cite, "metadata", None)

            extracted.append(ExtractedCaseCitation(
                kind=kind,
                matched_text=cite.matched_text(),
                span=tuple(cite.span()),
                volume=_clean(groups.get("volume")),
                reporter=_clean(groups.get("reporter")),
                page=_clean(groups.get("page")),
                plaintiff=_clean(getattr(metadata, "plaintiff", None)),
                defendant=_clean(getattr(metadata, "defendant", None)),
                court=_clean(getattr(metadata, "court", None)),
                year=_clean(getattr(cite, "year", None) or getattr(metadata, "year", None)),
                pin_cite=_clean(getattr(metadata, "pin_cite", None)),
            ))
        return extracted


def find_citation_span(text: str, needle: str, start_from: int = 0) -> Optional[Tuple[int, int]]:
    """
    Recover the exact span of needle in text.

    Tries, in order: exact search, whitespace-normalized search, then
    case-insensitive whitespace-normalized search. Each strategy first
    searches from start_from, then from the beginning of the text.

    Args:
        text: Text to search
        needle: Citation text reported by the extractor
        start_from: Approximate offset where the citation should be

    Returns:
        (start, end) or None if the text cannot be located
    """
    needle = needle.strip()
    if not needle:
        return None
    start_from = max(0, min(start_from, len(text)))

    for origin in (start_from, 0):
        index = text.find(needle, origin)
        if index != -1:
            return index, index + len(needle)

    tokens = needle.split()
    flexible = r"\s+".join(re.escape(token) for token in tokens)
    for flags in (0, re.IGNORECASE):
        pattern = re.compile(flexible, flags)
        for origin in (start_from, 0):
            match = pattern.search(text, origin)
            if match:
                return match.start(), match.end()

    return None


def _find_party_start(text: str, core_start: int, plaintiff: Optional[str], defendant: Optional[str]) -> int:
    """Offset where "Plaintiff v. Defendant," begins, or core_start if absent."""
    if not plaintiff or not defendant:
        return core_start

    window_start = max(0, core_start - PARTY_LOOKBACK_CHARS)
    window = text[window_start:core_start]
    pattern = re.compile(
        re.escape(plaintiff) + r"\s+v\.?\s+" + re.escape(defendant) + r",?\s*$",
        re.IGNORECASE,
    )
    match = pattern.search(window)
    if match:
        return window_start + match.start()
    return core_start


def to_case_match(text: str, cite: ExtractedCaseCitation) -> Optional[CitationMatch]:
    """
    Convert an extracted full case citation into an exact-span CitationMatch.

    Returns None when the core text cannot be located in the paragraph.
    """
    core_span = find_citation_span(text, cite.matched_text, cite.span[0])
    if core_span is None:
        logger.warning("Could not recover span for extracted citation %r", cite.matched_text)
        return None

    core_start, core_end = core_span
    start = _find_party_start(text, core_start, cite.plaintiff, cite.defendant)

    tail = _TAIL_PATTERN.match(text, core_end)
    end = tail.end() if tail else core_end
    court = _clean(tail.group("court")) if tail else None
    year = tail.group("year") if tail and tail.group("year") else cite.year

    components = {
        "volume": cite.volume or "",
        "reporter": cite.reporter or "",
        "page": cite.page or "",
    }
    if cite.plaintiff:
        components["party_1"] = cite.plaintiff
    if cite.defendant:
        components["party_2"] = cite.defendant
    if tail and tail.group("pin_cite"):
        components["pin_cite"] = tail.group("pin_cite")
    elif cite.pin_cite:
        components["pin_cite"] = cite.pin_cite
    if court:
        components["court"] = court
    if year:
        components["year"] = year

    return CitationMatch(
        full_match=text[start:end],
        start_index=start,
        end_index=end,
        citation_type=CitationType.CASE,
        components=components,
    )


class HybridCitationFinder:
    """
    Merge external case citations with the custom non-case patterns.

    Usage:
        finder = HybridCitationFinder()
        matches = finder.find_all(paragraph_text)
    """

    def __init__(
        self,
        extractor: Optional[CaseCitationExtractor] = None,
        matcher: Optional[PatternMatcher] = None
    ):
        self.extractor = extractor or EyeciteExtractor()
        self.matcher = matcher or PatternMatcher()

    def find_all(self, text: str) -> List[CitationMatch]:
        """
        Find citations in text using the external extractor for cases.

        Args:
            text: Paragraph text with markers stripped

        Returns:
            Non-overlapping matches sorted by start offset
        """
        if not text:
            return []

        case_matches: List[CitationMatch] = []
        for cite in self.extractor.extract(text):
            if cite.kind != "full_case":
                if cite.kind in REFERENCE_KINDS:
                    logger.debug("Skipping reference citation %r", cite.matched_text)
                continue

            match = to_case_match(text, cite)
            if match is None:
                continue
            if len(match.full_match.strip()) <= 1 or is_reference_citation(match.full_match):
                continue
            if any(match.overlaps(existing) for existing in case_matches):
                continue
            case_matches.append(match)

        merged = list(case_matches)
        for candidate in self.matcher.find_all(text):
            if any(candidate.overlaps(case) for case in case_matches):
                continue
            if candidate.citation_type == CitationType.CASE and any(
                abs(candidate.start_index - case.start_index) <= CASE_PRECEDENCE_CHARS
                for case in case_matches
            ):
                continue
            merged.append(candidate)

        merged.sort(key=lambda m: m.start_index)
        return merged
