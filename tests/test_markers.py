"""
Tests for citation markers and the marker repair pass.
"""

from citecheck.citations.markers import (
    clean_marker_residue,
    insert_markers,
    marker_spans,
    repair_citation_region,
    strip_markers,
)


class TestMarkerSyntax:
    """Test insertion and stripping."""

    def test_insert_in_reverse_keeps_offsets(self):
        """Offsets refer to the unmarked text regardless of insertion order."""
        text = "A 1 B 2"
        marked = insert_markers(text, [(2, 3, "cit_001"), (6, 7, "cit_002")])

        assert marked == "A [CITATION:cit_001]1[/CITATION:cit_001] B [CITATION:cit_002]2[/CITATION:cit_002]"
        assert strip_markers(marked) == text

    def test_strip_malformed_markers(self):
        assert strip_markers("x [CITATION:cit 1]y[/CITATION:]") == "x y"

    def test_marker_spans(self):
        text = insert_markers("42 U.S.C. § 1983 and 42 U.S.C. § 1983", [(0, 16, "cit_001"), (21, 37, "cit_001")])
        assert len(marker_spans(text, "cit_001")) == 2


class TestRepairPass:
    """Test the repair of split, duplicated or mismatched markers."""

    def test_well_formed_region_is_unwrapped(self):
        text = "under [CITATION:cit_002]28 U.S.C. § 1332(a)[/CITATION:cit_002] requires"
        result = repair_citation_region(text, "cit_002", "28 U.S.C. § 1332(a)")

        assert result.found
        assert not result.replaced
        assert result.text == "under 28 U.S.C. § 1332(a) requires"

    def test_duplicated_close_markers_are_unwrapped(self):
        """The region spans from the first open to the last close marker."""
        text = "under [CITATION:cit_002]28 U.S.C.[/CITATION:cit_002] § 1332[/CITATION:cit_002](a) requires"
        result = repair_citation_region(text, "cit_002", "28 U.S.C. § 1332")

        assert not result.replaced
        assert result.text == "under 28 U.S.C. § 1332(a) requires"

    def test_split_markers_replaced_with_subdivision(self):
        """A region much shorter than the canonical text is replaced, absorbing trailing pieces."""
        text = (
            "under [CITATION:cit_001]28 U.S.C.[/CITATION:cit_001] § "
            "[CITATION:cit_003]1332[/CITATION:cit_003](a) requires"
        )
        result = repair_citation_region(text, "cit_001", "28 U.S.C. § 1332")

        assert result.replaced
        assert result.text == "under 28 U.S.C. § 1332(a) requires"

    def test_content_mismatch_replaced(self):
        text = "[CITATION:cit_001]28 USC 1332[/CITATION:cit_001] applies"
        result = repair_citation_region(text, "cit_001", "28 U.S.C. § 1332")

        assert result.replaced
        assert result.text == "28 U.S.C. § 1332 applies"

    def test_subdivision_not_duplicated(self):
        """A trailing subdivision already in the canonical text is absorbed, not repeated."""
        text = "[CITATION:cit_001]28 USC 1332[/CITATION:cit_001](a) applies"
        result = repair_citation_region(text, "cit_001", "28 U.S.C. § 1332(a)")
        assert result.text == "28 U.S.C. § 1332(a) applies"

    def test_missing_markers_not_found(self):
        result = repair_citation_region("no markers here", "cit_009", "1 U.S.C. § 1")
        assert not result.found
        assert result.text == "no markers here"

    def test_other_citations_untouched(self):
        text = "[CITATION:cit_001]A[/CITATION:cit_001] and [CITATION:cit_002]B[/CITATION:cit_002]"
        result = repair_citation_region(text, "cit_001", "A")
        assert result.text == "A and [CITATION:cit_002]B[/CITATION:cit_002]"

    def test_repeated_citation_collapses_span_between(self):
        """Two occurrences of one id are one region; the words between them go too."""
        canonical = "42 U.S.C. § 1983"
        plain = f"Both {canonical} and later again {canonical} apply"
        first = plain.find(canonical)
        second = plain.find(canonical, first + 1)
        text = insert_markers(plain, [
            (first, first + len(canonical), "cit_001"),
            (second, second + len(canonical), "cit_001"),
        ])

        result = repair_citation_region(text, "cit_001", canonical)

        assert result.replaced
        assert result.text == "Both 42 U.S.C. § 1983 apply"


class TestResidueCleanup:
    """Test removal of leftover marker fragments."""

    def test_fragments_removed(self):
        assert clean_marker_residue("Held [/CITATION:cit_001 in 2020.") == "Held in 2020."
        assert clean_marker_residue("see 12]] here") == "see here"

    def test_whitespace_collapsed(self):
        text = "In  [CITATION:cit_001]Smith[/CITATION:cit_001]\n the court"
        assert clean_marker_residue(text) == "In Smith the court"
