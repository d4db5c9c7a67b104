"""
Citation identification and normalization.

Turns raw pattern matches into the canonical citation set of a document:
ids are assigned in document order, candidates that normalize to the same
key collapse onto the first one, and every match is wrapped in markers
carrying its canonical id.
"""

import logging
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Literal, Mapping, Optional, Protocol, Tuple

from citecheck.citations.eyecite_adapter import HybridCitationFinder
from citecheck.citations.format_validator import FormatValidator
from citecheck.citations.markers import insert_markers, strip_markers
from citecheck.citations.models import (
    Citation,
    CitationDocument,
    CitationMatch,
    CitationType,
    ContentParagraph,
)
from citecheck.citations.patterns import PatternMatcher, is_reference_citation
from citecheck.exceptions import ParagraphNotFoundError

logger = logging.getLogger(__name__)

IdentificationMethod = Literal["custom", "eyecite"]

CITATION_ID_PATTERN = re.compile(r"^cit_(\d+)$")
MARKER_ID_PATTERN = re.compile(r"\[CITATION:([A-Za-z0-9_]+)\]")

_CASE_KEY_PATTERN = re.compile(
    r"(\d+)\s+([A-Z][A-Za-z0-9.']*(?:\s+[A-Za-z0-9][A-Za-z0-9.']*){0,4}?)\s+(\d+|_{3})(?!\w)"
)


class CitationFinder(Protocol):
    """Anything that returns non-overlapping matches for a paragraph."""

    def find_all(self, text: str) -> List[CitationMatch]:
        ...


def format_citation_id(number: int) -> str:
    return f"cit_{number:03d}"


def _collapse(value: str) -> str:
    return " ".join(value.lower().split())


def _normalize_free_text(text: str) -> str:
    text = _collapse(text)
    text = re.sub(r"§\s*", "§ ", text)
    text = re.sub(r"et\s+seq\.?", "et seq", text)
    text = re.sub(r"[.,;:()]", "", text)
    return " ".join(text.split())


def normalization_key(
    citation_type: CitationType,
    citation_text: str,
    components: Optional[Mapping[str, str]] = None
) -> str:
    """
    Build the dedup key for a citation.

    - case: "volume reporter page" read from the citation text
    - statute/regulation: "title code § section"
    - rule: "rule_set rule_number"

    Keys are lowercased, whitespace-collapsed and prefixed with the type.
    """
    components = components or {}
    key = ""

    if citation_type == CitationType.CASE:
        match = _CASE_KEY_PATTERN.search(citation_text)
        if match:
            key = f"{match.group(1)} {match.group(2)} {match.group(3)}"
        elif components.get("reporter") and components.get("page"):
            key = f"{components.get('volume', '')} {components['reporter']} {components['page']}"
    elif citation_type in (CitationType.STATUTE, CitationType.REGULATION):
        if components.get("code") and components.get("section"):
            key = f"{components.get('title', '')} {components['code']} § {components['section']}"
    elif citation_type == CitationType.RULE:
        if components.get("rule_set") and components.get("rule_number"):
            key = f"{components['rule_set']} {components['rule_number']}"

    key = _collapse(key) if key else _normalize_free_text(citation_text)
    return f"{citation_type.value}:{key}"


def _build_finder(method: IdentificationMethod) -> CitationFinder:
    if method == "eyecite":
        return HybridCitationFinder()
    return PatternMatcher()


def _usable(match: CitationMatch) -> bool:
    text = match.full_match.strip()
    return len(text) > 1 and not is_reference_citation(text)


class CitationIdentifier:
    """
    Identify, deduplicate and mark citations in a document.

    Usage:
        identifier = CitationIdentifier(method="custom")
        annotated = identifier.identify(document)
        annotated.citations[0].id  # 'cit_001'
    """

    def __init__(
        self,
        method: IdentificationMethod = "custom",
        finder: Optional[CitationFinder] = None,
        validator: Optional[FormatValidator] = None
    ):
        self.method = method
        self.finder = finder or _build_finder(method)
        self.validator = validator or FormatValidator()

    def identify(self, document: CitationDocument) -> CitationDocument:
        """
        Run full identification over every paragraph.

        Existing markers are stripped first, so re-running on an annotated
        document yields the same citation set. Prior citations (and their
        tier results) are discarded.

        Args:
            document: Document with or without markers

        Returns:
            New document with canonical citations and marked-up content
        """
        paragraphs = [p.model_copy(update={"text": strip_markers(p.text)}) for p in document.content]

        counter = 0
        canonical_ids: Dict[str, str] = {}
        citations: List[Citation] = []
        placements: Dict[int, List[Tuple[int, int, str]]] = defaultdict(list)
        duplicates = 0

        for index, paragraph in enumerate(paragraphs):
            for match in self.finder.find_all(paragraph.text):
                if not _usable(match):
                    continue

                counter += 1
                citation_id = format_citation_id(counter)
                key = normalization_key(match.citation_type, match.full_match, match.components)

                if key in canonical_ids:
                    duplicates += 1
                    target_id = canonical_ids[key]
                else:
                    canonical_ids[key] = citation_id
                    citations.append(self._new_citation(citation_id, match))
                    target_id = citation_id

                placements[index].append((match.start_index, match.end_index, target_id))

        content = [
            p.model_copy(update={"text": insert_markers(p.text, placements.get(i, []))})
            for i, p in enumerate(paragraphs)
        ]

        logger.info(
            "Identified %d citations (%d duplicates merged) using %s method",
            len(citations), duplicates, self.method,
        )

        metadata = document.metadata.model_copy(update={
            "total_citations": len(citations),
            "identification_method": self.method,
            "identified_at": datetime.now(timezone.utc),
        })
        return CitationDocument(metadata=metadata, content=content, citations=citations)

    def reidentify_paragraph(self, document: CitationDocument, paragraph_id: str) -> CitationDocument:
        """
        Re-run identification on one paragraph, e.g. after it was edited.

        New citations continue the document's id sequence; a match whose key
        already belongs to an existing citation reuses that citation (and its
        results). Citations no longer referenced by any marker are dropped.

        Args:
            document: Annotated document
            paragraph_id: Paragraph to reprocess

        Returns:
            New document with the paragraph re-marked

        Raises:
            ParagraphNotFoundError: If paragraph_id is not in the document
        """
        target = document.get_paragraph(paragraph_id)
        if target is None:
            raise ParagraphNotFoundError(paragraph_id)

        text = strip_markers(target.text)
        counter = _highest_citation_number(document.citations)
        known_ids = {
            normalization_key(c.citation_type, c.citation_text, c.extracted_components): c.id
            for c in document.citations
        }

        new_citations: List[Citation] = []
        placements: List[Tuple[int, int, str]] = []

        for match in self.finder.find_all(text):
            if not _usable(match):
                continue
            key = normalization_key(match.citation_type, match.full_match, match.components)
            if key not in known_ids:
                counter += 1
                known_ids[key] = format_citation_id(counter)
                new_citations.append(self._new_citation(known_ids[key], match))
            placements.append((match.start_index, match.end_index, known_ids[key]))

        content: List[ContentParagraph] = []
        for paragraph in document.content:
            if paragraph.id == paragraph_id:
                paragraph = paragraph.model_copy(update={"text": insert_markers(text, placements)})
            content.append(paragraph)

        referenced = {
            citation_id
            for paragraph in content
            for citation_id in MARKER_ID_PATTERN.findall(paragraph.text)
        }
        citations = [c for c in document.citations + new_citations if c.id in referenced]

        logger.info(
            "Re-identified paragraph %s: %d new citations, %d total",
            paragraph_id, len(new_citations), len(citations),
        )

        metadata = document.metadata.model_copy(update={"total_citations": len(citations)})
        return CitationDocument(metadata=metadata, content=content, citations=citations)

    def _new_citation(self, citation_id: str, match: CitationMatch) -> Citation:
        return Citation(
            id=citation_id,
            citation_text=match.full_match,
            citation_type=match.citation_type,
            extracted_components=dict(match.components),
            tier_1=self.validator.validate(match.citation_type, match.components),
        )


def _highest_citation_number(citations: List[Citation]) -> int:
    numbers = [
        int(match.group(1))
        for match in (CITATION_ID_PATTERN.match(c.id) for c in citations)
        if match
    ]
    return max(numbers, default=0)


def identify_citations(document: CitationDocument, method: IdentificationMethod = "custom") -> CitationDocument:
    """Identify citations with a default CitationIdentifier."""
    return CitationIdentifier(method=method).identify(document)


def reidentify_paragraph(
    document: CitationDocument,
    paragraph_id: str,
    method: IdentificationMethod = "custom"
) -> CitationDocument:
    """Re-identify one paragraph with a default CitationIdentifier."""
    return CitationIdentifier(method=method).reidentify_paragraph(document, paragraph_id)
