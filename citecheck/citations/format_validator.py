"""
Tier 1 format validation.

Pure structural checks against the lookup tables. No I/O, no semantic
judgment: a VALID_FORMAT citation may still be fabricated, which is what
Tier 2 and Tier 3 are for.
"""

from datetime import datetime, timezone
from typing import Mapping, Optional

from citecheck.citations.lookup_tables import CitationLookupTables, get_lookup_tables
from citecheck.citations.models import CitationType, Tier1Result, Tier1Status

# Earliest plausible year for a federal citation
MIN_CITATION_YEAR = 1789

PLACEHOLDER_PAGE = "___"


class FormatValidator:
    """
    Classify a citation's structural plausibility.

    Usage:
        validator = FormatValidator()
        result = validator.validate(CitationType.CASE, {
            "volume": "123", "reporter": "F.3d", "page": "456",
            "court": "D.C. Cir.", "year": "2020",
        })
        # Tier1Result(status=VALID_FORMAT, confidence=0.99)
    """

    def __init__(self, tables: Optional[CitationLookupTables] = None, current_year: Optional[int] = None):
        self.tables = tables or get_lookup_tables()
        self.current_year = current_year or datetime.now(timezone.utc).year

    def validate(self, citation_type: CitationType, components: Mapping[str, str]) -> Tier1Result:
        if citation_type == CitationType.CASE:
            return self.validate_case(components)
        if citation_type in (CitationType.STATUTE, CitationType.REGULATION):
            return self.validate_code(components)
        if citation_type == CitationType.RULE:
            return self.validate_rule(components)
        return Tier1Result(status=Tier1Status.AMBIGUOUS_FORMAT, confidence=0.50)

    def validate_case(self, components: Mapping[str, str]) -> Tier1Result:
        """
        Validate a case citation.

        Reporter, volume and page are required (page may be the "___" slip
        opinion placeholder). Court and year are optional: when present they
        must validate, when absent the result is at best AMBIGUOUS_FORMAT.
        Supreme Court reporters imply their court.
        """
        reporter = components.get("reporter")
        volume = components.get("volume")
        page = components.get("page")

        if not self.tables.is_valid_reporter(reporter):
            return Tier1Result(status=Tier1Status.INVALID_FORMAT, confidence=0.85)
        if not _is_number(volume) or not (_is_number(page) or page == PLACEHOLDER_PAGE):
            return Tier1Result(status=Tier1Status.INVALID_FORMAT, confidence=0.85)

        court = components.get("court")
        if court and not self.tables.is_valid_court(court):
            return Tier1Result(status=Tier1Status.INVALID_FORMAT, confidence=0.85)
        court_known = bool(court) or self.tables.is_supreme_court_reporter(reporter)

        year = components.get("year")
        year_valid = bool(year) and self.is_plausible_year(year)

        if court_known and year_valid:
            return Tier1Result(status=Tier1Status.VALID_FORMAT, confidence=0.99)
        return Tier1Result(status=Tier1Status.AMBIGUOUS_FORMAT, confidence=0.70)

    def validate_code(self, components: Mapping[str, str]) -> Tier1Result:
        if self.tables.is_valid_code(components.get("code")):
            return Tier1Result(status=Tier1Status.VALID_FORMAT, confidence=0.98)
        return Tier1Result(status=Tier1Status.INVALID_FORMAT, confidence=0.80)

    def validate_rule(self, components: Mapping[str, str]) -> Tier1Result:
        if self.tables.is_valid_rule(components.get("rule_set")):
            return Tier1Result(status=Tier1Status.VALID_FORMAT, confidence=0.99)
        return Tier1Result(status=Tier1Status.INVALID_FORMAT, confidence=0.75)

    def is_plausible_year(self, year: str) -> bool:
        if not _is_number(year):
            return False
        return MIN_CITATION_YEAR <= int(year) <= self.current_year + 1


def _is_number(value: Optional[str]) -> bool:
    return bool(value) and value.isdigit()


def validate_format(citation_type: CitationType, components: Mapping[str, str]) -> Tier1Result:
    """Validate with the packaged lookup tables."""
    return FormatValidator().validate(citation_type, components)
