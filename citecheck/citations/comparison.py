"""
Compare two identification runs over the same document.

Used to check the regex-only identifier against the eyecite hybrid: which
citations both found, and which only one of them found.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from citecheck.citations.models import Citation, CitationDocument, CitationType

DEFAULT_SIMILARITY_THRESHOLD = 0.7


class CitationPair(BaseModel):
    """Two citations judged to be the same authority."""
    custom: Citation
    eyecite: Citation
    similarity: float = Field(ge=0.0, le=1.0)


class TypeCounts(BaseModel):
    custom: int = 0
    eyecite: int = 0


class ComparisonResult(BaseModel):
    """Side-by-side result of two identification methods."""
    custom_count: int
    eyecite_count: int
    overlap_count: int
    custom_only: List[Citation] = Field(default_factory=list)
    eyecite_only: List[Citation] = Field(default_factory=list)
    overlapping: List[CitationPair] = Field(default_factory=list)
    type_breakdown: Dict[str, TypeCounts] = Field(default_factory=dict)


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def citation_similarity(first: str, second: str) -> float:
    """
    Similarity of two citation texts in [0, 1].

    Exact (normalized) match scores 1.0; containment scores the length ratio
    of the shorter to the longer text; otherwise word-level Jaccard overlap.
    """
    a, b = _normalize(first), _normalize(second)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))

    words_a, words_b = set(a.split()), set(b.split())
    return len(words_a & words_b) / len(words_a | words_b)


def match_citations(
    custom: List[Citation],
    eyecite: List[Citation],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD
) -> List[CitationPair]:
    """Greedy best-match pairing; each eyecite citation is used at most once."""
    pairs: List[CitationPair] = []
    used: set = set()

    for candidate in custom:
        best: Optional[tuple] = None
        for index, other in enumerate(eyecite):
            if index in used:
                continue
            similarity = citation_similarity(candidate.citation_text, other.citation_text)
            if similarity >= threshold and (best is None or similarity > best[0]):
                best = (similarity, index)

        if best is not None:
            similarity, index = best
            used.add(index)
            pairs.append(CitationPair(custom=candidate, eyecite=eyecite[index], similarity=similarity))

    return pairs


def compare_identifications(
    custom: CitationDocument,
    eyecite: CitationDocument,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD
) -> ComparisonResult:
    """
    Compare the citations found by the custom and eyecite methods.

    Args:
        custom: Document identified with method="custom"
        eyecite: Same document identified with method="eyecite"
        threshold: Minimum similarity for two citations to pair

    Returns:
        ComparisonResult with pairs, unique citations and per-type counts
    """
    pairs = match_citations(custom.citations, eyecite.citations, threshold)
    custom_ids = {p.custom.id for p in pairs}
    eyecite_ids = {p.eyecite.id for p in pairs}

    breakdown = {t.value: TypeCounts() for t in CitationType}
    for citation in custom.citations:
        breakdown[citation.citation_type.value].custom += 1
    for citation in eyecite.citations:
        breakdown[citation.citation_type.value].eyecite += 1

    return ComparisonResult(
        custom_count=len(custom.citations),
        eyecite_count=len(eyecite.citations),
        overlap_count=len(pairs),
        custom_only=[c for c in custom.citations if c.id not in custom_ids],
        eyecite_only=[c for c in eyecite.citations if c.id not in eyecite_ids],
        overlapping=pairs,
        type_breakdown=breakdown,
    )
