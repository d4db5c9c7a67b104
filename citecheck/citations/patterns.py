"""
Regex pattern matcher for legal citations.

Extracts four citation types from raw paragraph text:
- Federal (and state) case citations: "Smith v. Jones, 123 F.3d 456 (D.C. Cir. 2020)"
- Statutes: "28 U.S.C. § 1332(a)", "Revised Statutes § 1979", "42 Stat. 1234"
- Regulations: "29 C.F.R. § 1630.2", "85 Fed. Reg. 12345"
- Rules: "Fed. R. Civ. P. 12(b)(6)", "Federal Rule of Evidence 702", "Local Rule 7.1"

Raw matches from all scanners are merged and overlap-resolved so that the
longer, more specific match always wins.
"""

import logging
import re
from typing import List, Optional

from citecheck.citations.models import CitationMatch, CitationType

logger = logging.getLogger(__name__)

# Words that open a sentence or a citation signal rather than a party name
_SIGNAL_WORDS = r"(?:See|Cf|But|Accord|Compare|Contra|In|The|Also|And|Under|As|Following|Citing)"
_PARTY = r"[A-Z][\w.'&\-]*(?:,?\s+(?:[A-Z][\w.'&\-]*|of|the|and|for|ex|rel\.|&)){0,8}?"
_SUBDIVISIONS = r"(?:\([A-Za-z0-9]+\))*"

# Distance (in characters) under which two statute matches are treated as
# the same location for similarity-based suppression
PROXIMITY_CHARS = 5

_REFERENCE_PATTERN = re.compile(r"^\s*(?:id\.|ibid\.)|\b(?:supra|infra)\b", re.IGNORECASE)


def is_reference_citation(text: str) -> bool:
    """True for shorthand that refers back to an authority (id., supra, infra)."""
    return bool(_REFERENCE_PATTERN.search(text or ""))


def _collapse(value: Optional[str]) -> str:
    return " ".join((value or "").split())


class PatternMatcher:
    """
    Finds citation candidates in a block of text.

    Usage:
        matcher = PatternMatcher()
        matches = matcher.find_all("See 28 U.S.C. § 1332(a).")
        # [CitationMatch(full_match='28 U.S.C. § 1332(a)', citation_type='statute', ...)]
    """

    CASE_PATTERN = re.compile(
        r"\b(?!" + _SIGNAL_WORDS + r"\b)"
        r"(?P<party_1>" + _PARTY + r")\s+v\.?\s+"
        r"(?P<party_2>" + _PARTY + r"),\s+"
        r"(?P<volume>\d+)\s+"
        r"(?P<reporter>[A-Z][A-Za-z0-9.']*(?:\s+[A-Za-z0-9][A-Za-z0-9.']*){0,4}?)\s+"
        r"(?P<page>\d+|_{3})(?!\w)"
        r"(?:,\s*(?P<pin_cite>\d+(?:-\d+)?))?"
        r"(?:\s+\((?P<court>[^()]*?)\s*(?P<year>\d{4})\))?"
    )

    STATUTE_PATTERNS = [
        # 28 U.S.C. § 1332(a), 42 U.S.C.A. §§ 2000e et seq.
        re.compile(
            r"(?P<title>\d+)\s+(?P<code>U\.S\.C\.(?:A\.|S\.)?(?:\s+Supp\.)?)\s+§{1,2}\s*"
            r"(?P<section>\d+[a-z]*" + _SUBDIVISIONS + r")(?:\s+et\s+seq\.)?",
            re.IGNORECASE,
        ),
        # Revised Statutes § 1979 / Rev. Stat. § 1979
        re.compile(
            r"(?P<code>Revised\s+Statutes|Rev\.\s+Stat\.)\s+§{1,2}\s*"
            r"(?P<section>\d+[a-z]*" + _SUBDIVISIONS + r")"
        ),
        # 42 Stat. 1234
        re.compile(r"(?P<title>\d+)\s+(?P<code>Stat\.)\s+(?P<section>\d[\d,]*\d|\d)"),
    ]

    REGULATION_PATTERNS = [
        # 29 C.F.R. § 1630.2(g)
        re.compile(
            r"(?P<title>\d+)\s+(?P<code>C\.F\.R\.)\s+§{1,2}\s*"
            r"(?P<section>\d+(?:\.\d+)?[a-z]*" + _SUBDIVISIONS + r")"
        ),
        # 85 Fed. Reg. 12345
        re.compile(r"(?P<title>\d+)\s+(?P<code>Fed\.\s+Reg\.)\s+(?P<section>\d[\d,]*\d|\d)"),
    ]

    RULE_ABBREVIATED_PATTERN = re.compile(
        r"Fed\.\s*R\.\s*(?P<abbr>Civ|Crim|App|Bankr|Evid)\.\s*(?:P\.\s*)?"
        r"(?P<number>\d+(?:\.\d+)?[a-z]*" + _SUBDIVISIONS + r")"
    )

    RULE_FULL_PATTERN = re.compile(
        r"Federal\s+Rules?\s+of\s+"
        r"(?:(?P<category>Civil|Criminal|Appellate|Bankruptcy)\s+Procedure|(?P<evidence>Evidence))\s+"
        r"(?P<number>\d+(?:\.\d+)?[a-z]*" + _SUBDIVISIONS + r")"
    )

    LOCAL_RULE_PATTERN = re.compile(
        r"(?:(?:Civil|Criminal|District|Circuit|Supreme)\s+)?Local\s+Rule\s+"
        r"(?P<number>\d+(?:\.\d+)*[a-z]*" + _SUBDIVISIONS + r")"
    )

    # Abbreviation -> category name
    RULE_CATEGORIES = {
        "Civ": "Civil Procedure",
        "Crim": "Criminal Procedure",
        "App": "Appellate Procedure",
        "Bankr": "Bankruptcy Procedure",
        "Evid": "Evidence",
    }

    # Full-name category -> abbreviation
    RULE_ABBREVIATIONS = {
        "Civil": "Civ",
        "Criminal": "Crim",
        "Appellate": "App",
        "Bankruptcy": "Bankr",
        "Evidence": "Evid",
    }

    def find_all(self, text: str) -> List[CitationMatch]:
        """
        Find every non-overlapping citation candidate in text.

        Args:
            text: Paragraph text (markers should already be stripped)

        Returns:
            Matches sorted by start offset
        """
        if not text:
            return []

        raw: List[CitationMatch] = []
        raw.extend(self.find_case_citations(text))
        raw.extend(self.find_statute_citations(text))
        raw.extend(self.find_regulation_citations(text))
        raw.extend(self.find_rule_citations(text))

        resolved = resolve_overlaps(raw)
        if len(resolved) != len(raw):
            logger.debug("Resolved %d raw matches to %d citations", len(raw), len(resolved))
        return resolved

    def find_case_citations(self, text: str) -> List[CitationMatch]:
        matches = []
        for match in self.CASE_PATTERN.finditer(text):
            components = {
                "party_1": _collapse(match.group("party_1")),
                "party_2": _collapse(match.group("party_2")),
                "volume": match.group("volume"),
                "reporter": _collapse(match.group("reporter")),
                "page": match.group("page"),
            }
            if match.group("pin_cite"):
                components["pin_cite"] = match.group("pin_cite")
            court = _collapse(match.group("court"))
            if court:
                components["court"] = court
            if match.group("year"):
                components["year"] = match.group("year")

            matches.append(CitationMatch(
                full_match=match.group(0),
                start_index=match.start(),
                end_index=match.end(),
                citation_type=CitationType.CASE,
                components=components,
            ))
        return matches

    def find_statute_citations(self, text: str) -> List[CitationMatch]:
        matches = []
        for pattern in self.STATUTE_PATTERNS:
            for match in pattern.finditer(text):
                groups = match.groupdict()
                code = _collapse(groups["code"])
                if code.lower().startswith("revised"):
                    code = "Rev. Stat."
                matches.append(CitationMatch(
                    full_match=match.group(0),
                    start_index=match.start(),
                    end_index=match.end(),
                    citation_type=CitationType.STATUTE,
                    components={
                        "title": groups.get("title") or "",
                        "code": code,
                        "section": groups["section"],
                    },
                ))
        return matches

    def find_regulation_citations(self, text: str) -> List[CitationMatch]:
        matches = []
        for pattern in self.REGULATION_PATTERNS:
            for match in pattern.finditer(text):
                matches.append(CitationMatch(
                    full_match=match.group(0),
                    start_index=match.start(),
                    end_index=match.end(),
                    citation_type=CitationType.REGULATION,
                    components={
                        "title": match.group("title"),
                        "code": _collapse(match.group("code")),
                        "section": match.group("section"),
                    },
                ))
        return matches

    def find_rule_citations(self, text: str) -> List[CitationMatch]:
        matches = []

        for match in self.RULE_ABBREVIATED_PATTERN.finditer(text):
            abbr = match.group("abbr")
            matches.append(self._rule_match(match, abbr))

        for match in self.RULE_FULL_PATTERN.finditer(text):
            category = match.group("category") or match.group("evidence")
            matches.append(self._rule_match(match, self.RULE_ABBREVIATIONS[category]))

        for match in self.LOCAL_RULE_PATTERN.finditer(text):
            matches.append(CitationMatch(
                full_match=match.group(0),
                start_index=match.start(),
                end_index=match.end(),
                citation_type=CitationType.RULE,
                components={
                    "rule_set": "Local Rule",
                    "rule_number": match.group("number"),
                    "category": "Local Rules",
                },
            ))

        return matches

    def _rule_match(self, match: re.Match, abbr: str) -> CitationMatch:
        rule_set = "Fed. R. Evid." if abbr == "Evid" else f"Fed. R. {abbr}. P."
        return CitationMatch(
            full_match=match.group(0),
            start_index=match.start(),
            end_index=match.end(),
            citation_type=CitationType.RULE,
            components={
                "rule_set": rule_set,
                "rule_number": match.group("number"),
                "category": self.RULE_CATEGORIES.get(abbr, abbr),
            },
        )


def _normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def _suffix_related(a: str, b: str) -> bool:
    """True if one title is the other with extra leading digit(s), e.g. '28' / '8'."""
    if not a or not b or a == b:
        return False
    shorter, longer = sorted((a, b), key=len)
    return longer.endswith(shorter) and len(longer) - len(shorter) == 1


def _prefix_related(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a.startswith(b) or b.startswith(a)


def is_statute_collision(a: CitationMatch, b: CitationMatch) -> bool:
    """
    Detect two statute matches that describe the same authority.

    Prefix-matching can yield "8 U.S.C. § 1332" inside "28 U.S.C. § 1332(a)";
    such title-digit collisions are suppressed alongside exact repeats.
    """
    if a.citation_type != CitationType.STATUTE or b.citation_type != CitationType.STATUTE:
        return False

    a_code = _normalize_text(a.components.get("code", ""))
    b_code = _normalize_text(b.components.get("code", ""))
    if a_code != b_code:
        return False

    a_title = a.components.get("title", "")
    b_title = b.components.get("title", "")
    a_section = a.components.get("section", "")
    b_section = b.components.get("section", "")

    if a_title == b_title and a_section.lower() == b_section.lower():
        return True
    if _suffix_related(a_title, b_title) and _prefix_related(a_section, b_section):
        return True
    return False


def _near(a: CitationMatch, b: CitationMatch) -> bool:
    gap = max(a.start_index, b.start_index) - min(a.end_index, b.end_index)
    return gap <= PROXIMITY_CHARS


def matches_conflict(a: CitationMatch, b: CitationMatch) -> bool:
    """
    True when two candidates cannot both be kept.

    Intersecting spans always conflict. Adjacent candidates (within
    PROXIMITY_CHARS) also conflict when one's text contains the other's or
    when they are colliding statutes.
    """
    if a.overlaps(b):
        return True
    if not _near(a, b):
        return False

    a_text = _normalize_text(a.full_match)
    b_text = _normalize_text(b.full_match)
    if a_text in b_text or b_text in a_text:
        return True
    return is_statute_collision(a, b)


def resolve_overlaps(matches: List[CitationMatch]) -> List[CitationMatch]:
    """
    Drop conflicting candidates, keeping the longer one of each conflict.

    Args:
        matches: Raw candidates from any number of scanners

    Returns:
        Surviving candidates sorted by start offset
    """
    ordered = sorted(matches, key=lambda m: (-m.length, m.start_index))
    kept: List[CitationMatch] = []

    for candidate in ordered:
        if any(matches_conflict(candidate, existing) for existing in kept):
            continue
        kept.append(candidate)

    kept.sort(key=lambda m: m.start_index)
    return kept


def find_all_citations(text: str) -> List[CitationMatch]:
    """Module-level shortcut for PatternMatcher().find_all(text)."""
    return PatternMatcher().find_all(text)
