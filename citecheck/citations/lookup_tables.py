"""
Lookup tables for Tier 1 format validation.

Reporter, court, code and rule-set abbreviations ship as a JSON data file
next to this package. Comparisons ignore case and internal whitespace, so
"F.Supp.2d" and "F. Supp. 2d" are the same reporter.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _fold(value: str) -> str:
    return "".join(value.split()).lower()


class CitationLookupTables:
    """
    Membership checks over the citation lookup tables.

    Usage:
        tables = get_lookup_tables()
        tables.is_valid_reporter("F.3d")      # True
        tables.is_valid_code("U.S.C.")        # True
        tables.is_valid_rule("Fed. R. Evid.") # True
    """

    DEFAULT_PATH = Path(__file__).parent / "data" / "lookup_tables.json"

    def __init__(self, data: dict):
        self.data = data

        reporters = data.get("federal_reporters", {})
        self.supreme_court_reporters = {_fold(r) for r in reporters.get("supreme_court", [])}
        self._reporters = {
            _fold(r)
            for group in reporters.values()
            for r in group
        } | {_fold(r) for r in data.get("regional_reporters", [])}

        courts = data.get("federal_courts", {})
        self._courts = {
            _fold(c)
            for group in courts.values()
            for c in group
        } | {_fold(c) for c in data.get("state_courts", [])}

        codes = data.get("federal_codes", {})
        self._codes = {_fold(c) for group in codes.values() for c in group}
        self._rules = {_fold(r) for r in data.get("federal_rules", [])}

    @classmethod
    def from_path(cls, path: Optional[Path] = None) -> "CitationLookupTables":
        """
        Load tables from a JSON file.

        Args:
            path: JSON file; defaults to the packaged lookup_tables.json

        Returns:
            CitationLookupTables instance
        """
        path = Path(path) if path is not None else cls.DEFAULT_PATH
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    def is_valid_reporter(self, reporter: Optional[str]) -> bool:
        return bool(reporter) and _fold(reporter) in self._reporters

    def is_supreme_court_reporter(self, reporter: Optional[str]) -> bool:
        return bool(reporter) and _fold(reporter) in self.supreme_court_reporters

    def is_valid_court(self, court: Optional[str]) -> bool:
        return bool(court) and _fold(court) in self._courts

    def is_valid_code(self, code: Optional[str]) -> bool:
        return bool(code) and _fold(code) in self._codes

    def is_valid_rule(self, rule_set: Optional[str]) -> bool:
        return bool(rule_set) and _fold(rule_set) in self._rules


@lru_cache(maxsize=1)
def get_lookup_tables() -> CitationLookupTables:
    """Packaged lookup tables, loaded once per process."""
    return CitationLookupTables.from_path()
