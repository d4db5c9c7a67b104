"""
Tests for Tier 1 format validation.
"""

import pytest

from citecheck.citations.format_validator import FormatValidator, validate_format
from citecheck.citations.lookup_tables import get_lookup_tables
from citecheck.citations.models import CitationType, Tier1Status


@pytest.fixture
def validator():
    return FormatValidator(current_year=2024)


def case(**overrides):
    components = {
        "volume": "123",
        "reporter": "F.3d",
        "page": "456",
        "court": "D.C. Cir.",
        "year": "2020",
    }
    components.update(overrides)
    return {k: v for k, v in components.items() if v is not None}


class TestLookupTables:
    """Test packaged lookup tables."""

    def test_spacing_and_case_ignored(self):
        tables = get_lookup_tables()
        assert tables.is_valid_reporter("F. Supp. 2d")
        assert tables.is_valid_reporter("f.supp.2d")
        assert tables.is_valid_court("D.C. Cir.")
        assert tables.is_supreme_court_reporter("S. Ct.")
        assert not tables.is_valid_reporter("Q.Z.9th")


class TestCaseValidation:
    """Test the case decision table."""

    def test_complete_citation_valid(self, validator):
        result = validator.validate(CitationType.CASE, case())
        assert result.status == Tier1Status.VALID_FORMAT
        assert result.confidence == 0.99

    def test_unknown_reporter_invalid(self, validator):
        result = validator.validate(CitationType.CASE, case(reporter="Q.Z.9th"))
        assert result.status == Tier1Status.INVALID_FORMAT
        assert result.confidence == 0.85

    def test_unknown_court_invalid(self, validator):
        result = validator.validate(CitationType.CASE, case(court="Imaginary Ct."))
        assert result.status == Tier1Status.INVALID_FORMAT

    def test_non_numeric_volume_invalid(self, validator):
        result = validator.validate(CitationType.CASE, case(volume="XII"))
        assert result.status == Tier1Status.INVALID_FORMAT

    def test_missing_court_ambiguous(self, validator):
        """Without a court (and no Supreme Court reporter) the format is ambiguous."""
        result = validator.validate(CitationType.CASE, case(court=None))
        assert result.status == Tier1Status.AMBIGUOUS_FORMAT
        assert result.confidence == 0.70

    def test_supreme_court_reporter_implies_court(self, validator):
        result = validator.validate(CitationType.CASE, case(reporter="U.S.", court=None, year="1954"))
        assert result.status == Tier1Status.VALID_FORMAT

    def test_slip_opinion_placeholder_page(self, validator):
        result = validator.validate(CitationType.CASE, case(page="___"))
        assert result.status == Tier1Status.VALID_FORMAT

    @pytest.mark.parametrize("year", ["1700", "2026", None])
    def test_implausible_or_missing_year_ambiguous(self, validator, year):
        result = validator.validate(CitationType.CASE, case(year=year))
        assert result.status == Tier1Status.AMBIGUOUS_FORMAT


class TestCodeAndRuleValidation:
    """Test statute, regulation and rule checks."""

    def test_known_codes(self, validator):
        statute = validator.validate(CitationType.STATUTE, {"title": "28", "code": "U.S.C.", "section": "1332"})
        regulation = validator.validate(CitationType.REGULATION, {"title": "29", "code": "C.F.R.", "section": "1630.2"})

        assert statute.status == regulation.status == Tier1Status.VALID_FORMAT
        assert statute.confidence == 0.98

    def test_unknown_code(self, validator):
        result = validator.validate(CitationType.STATUTE, {"code": "X.Y.Z.", "section": "1"})
        assert result.status == Tier1Status.INVALID_FORMAT
        assert result.confidence == 0.80

    def test_rules(self, validator):
        known = validator.validate(CitationType.RULE, {"rule_set": "Fed. R. Civ. P.", "rule_number": "12"})
        unknown = validator.validate(CitationType.RULE, {"rule_set": "Fed. R. Foo. P.", "rule_number": "1"})

        assert known.status == Tier1Status.VALID_FORMAT
        assert known.confidence == 0.99
        assert unknown.status == Tier1Status.INVALID_FORMAT
        assert unknown.confidence == 0.75

    def test_module_helper(self):
        result = validate_format(CitationType.RULE, {"rule_set": "Local Rule", "rule_number": "7.1"})
        assert result.status == Tier1Status.VALID_FORMAT
