"""
Inline citation markers.

Citations are delimited in paragraph text as
``[CITATION:cit_001]28 U.S.C. § 1332(a)[/CITATION:cit_001]``.

This module owns marker syntax: building and inserting markers, stripping
them, and the repair pass that fixes split, duplicated or nested markers
left behind by earlier identification runs.
"""

import re
from typing import Iterable, List, Tuple

from pydantic import BaseModel, Field

OPEN_MARKER_TEMPLATE = "[CITATION:{id}]"
CLOSE_MARKER_TEMPLATE = "[/CITATION:{id}]"

WELL_FORMED_MARKER = re.compile(r"\[/?CITATION:[A-Za-z0-9_]+\]")
MALFORMED_MARKER = re.compile(r"\[/?CITATION:[^\]]*\]")
CLOSE_MARKER_ANY = re.compile(r"\[/CITATION:[^\]]+\]")

# Residue left when markers were cut in half or interleaved
FRAGMENT_PATTERNS = [
    re.compile(r"\[/?CITATION:[A-Za-z0-9_]*"),
    re.compile(r"\]\d+\]"),
    re.compile(r"\d+\]\]"),
    re.compile(r"\]\s*\]"),
]

SUBDIVISION_AFTER_MARKER = re.compile(r"(?:\[/?CITATION:[^\]]*\])*(\([a-z0-9]+\))")

# How far past the last close marker to look for more pieces of the citation
LOOKAHEAD_CHARS = 200

# Canonical text this much longer than the marked text means markers were split
SPLIT_LENGTH_RATIO = 1.5

MAX_CLEANUP_PASSES = 5


def open_marker(citation_id: str) -> str:
    return OPEN_MARKER_TEMPLATE.format(id=citation_id)


def close_marker(citation_id: str) -> str:
    return CLOSE_MARKER_TEMPLATE.format(id=citation_id)


def strip_markers(text: str) -> str:
    """Remove every well-formed or malformed marker, leaving the text between them."""
    return MALFORMED_MARKER.sub("", text)


def insert_markers(text: str, placements: Iterable[Tuple[int, int, str]]) -> str:
    """
    Wrap spans of text in markers.

    Placements are applied in reverse start order so that inserting one pair
    of markers never shifts the offsets of the spans still to be wrapped.

    Args:
        text: Marker-free paragraph text
        placements: (start, end, citation_id) tuples; spans must not overlap

    Returns:
        Annotated text
    """
    for start, end, citation_id in sorted(placements, key=lambda p: p[0], reverse=True):
        text = (
            text[:start]
            + open_marker(citation_id)
            + text[start:end]
            + close_marker(citation_id)
            + text[end:]
        )
    return text


def marker_spans(text: str, citation_id: str) -> List[Tuple[int, int]]:
    """(start, end) of each well-formed marked region for citation_id, in order."""
    pattern = re.compile(
        re.escape(open_marker(citation_id)) + r"(.*?)" + re.escape(close_marker(citation_id)),
        re.DOTALL,
    )
    return [match.span() for match in pattern.finditer(text)]


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


class RepairResult(BaseModel):
    """Outcome of the marker repair pass for one citation."""
    text: str = Field(description="Paragraph text with this citation's markers resolved")
    found: bool = Field(description="Both an open and a close marker were present")
    replaced: bool = Field(
        default=False,
        description="The marked region was replaced with the canonical citation text"
    )


def repair_citation_region(text: str, citation_id: str, citation_text: str) -> RepairResult:
    """
    Resolve one citation's marked region against its canonical text.

    The region runs from the first open marker to the last close marker for
    the id. If the marked content, stripped of markers, does not normalize to
    the canonical text (or the canonical text is much longer, meaning the
    markers were split), the whole region is replaced with the canonical text,
    extended over further close markers within LOOKAHEAD_CHARS and over a
    subdivision such as "(a)" immediately after the region.

    Repeated occurrences of one id in a paragraph form a single region, so
    the text between them is replaced along with the markers.

    Args:
        text: Paragraph text containing markers
        citation_id: Citation whose markers to resolve
        citation_text: Canonical citation text

    Returns:
        RepairResult; other citations' markers are left untouched
    """
    opening = open_marker(citation_id)
    closing = close_marker(citation_id)

    first_open = text.find(opening)
    last_close = text.rfind(closing)
    if first_open == -1 or last_close == -1 or last_close < first_open:
        return RepairResult(text=text, found=False)

    region_end = last_close + len(closing)
    marked_content = strip_markers(text[first_open:region_end]).strip()

    content_matches = _normalize(marked_content) == _normalize(citation_text)
    split = len(citation_text) > len(marked_content) * SPLIT_LENGTH_RATIO

    if content_matches and not split:
        repaired = text[:first_open] + marked_content + text[region_end:]
        return RepairResult(text=repaired, found=True)

    extended_end = region_end
    if split:
        lookahead = text[region_end:region_end + LOOKAHEAD_CHARS]
        trailing = list(CLOSE_MARKER_ANY.finditer(lookahead))
        if trailing:
            extended_end = region_end + trailing[-1].end()

    replacement = citation_text
    subdivision = SUBDIVISION_AFTER_MARKER.match(text, extended_end)
    if subdivision:
        if not citation_text.endswith(subdivision.group(1)):
            replacement = citation_text + subdivision.group(1)
        extended_end = subdivision.end()

    repaired = text[:first_open] + replacement + text[extended_end:]
    return RepairResult(text=repaired, found=True, replaced=True)


def clean_marker_residue(text: str, max_passes: int = MAX_CLEANUP_PASSES) -> str:
    """
    Strip all residual marker syntax until the text stops changing.

    Args:
        text: Text that may contain markers or marker fragments
        max_passes: Upper bound on cleanup passes

    Returns:
        Marker-free text with whitespace collapsed
    """
    for _ in range(max_passes):
        previous = text
        text = WELL_FORMED_MARKER.sub("", text)
        text = MALFORMED_MARKER.sub("", text)
        for pattern in FRAGMENT_PATTERNS:
            text = pattern.sub("", text)
        if text == previous:
            break
    return " ".join(text.split())
