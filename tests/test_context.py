"""
Tests for evaluation context extraction.
"""

from citecheck.citations.context import ContextExtractor, extract_context
from citecheck.citations.models import CitationDocument, CitationType, ContentParagraph
from tests.conftest import make_citation

CASE_TEXT = "Smith v. Jones, 123 F.3d 456 (D.C. Cir. 2020)"


def document_with(paragraphs):
    return CitationDocument(
        content=[ContentParagraph(id=f"p{i}", text=text) for i, text in enumerate(paragraphs, 1)],
        citations=[make_citation("cit_001", CASE_TEXT, CitationType.CASE)],
    )


class TestContextExtractor:
    """Test context reconstruction."""

    def test_preceding_sentences_prepended(self):
        """The last two sentences of the previous paragraph lead the context."""
        document = document_with([
            "First sentence here. Second sentence here. Third sentence here.",
            f"In [CITATION:cit_001]{CASE_TEXT}[/CITATION:cit_001], the court held X.",
        ])

        context = ContextExtractor().extract("cit_001", document)

        assert context == (
            "Second sentence here. Third sentence here. "
            f"In {CASE_TEXT}, the court held X."
        )

    def test_without_preceding(self):
        document = document_with([
            "Background.",
            f"In [CITATION:cit_001]{CASE_TEXT}[/CITATION:cit_001], the court held X.",
        ])
        assert extract_context("cit_001", document, include_preceding=False) == f"In {CASE_TEXT}, the court held X."

    def test_first_paragraph_has_no_preceding(self):
        document = document_with([f"[CITATION:cit_001]{CASE_TEXT}[/CITATION:cit_001] controls."])
        assert ContextExtractor().extract("cit_001", document) == f"{CASE_TEXT} controls."

    def test_split_markers_repaired(self):
        """Malformed markers are repaired before the context is returned."""
        document = document_with([
            "In [CITATION:cit_001]Smith v. Jones[/CITATION:cit_001], 123 F.3d 456 "
            "[CITATION:cit_002](D.C. Cir. 2020)[/CITATION:cit_002], the court held X.",
        ])
        context = ContextExtractor().extract("cit_001", document)
        assert "[" not in context
        assert CASE_TEXT in context

    def test_unknown_citation_returns_empty(self):
        document = document_with(["No citations here."])
        assert ContextExtractor().extract("cit_404", document) == ""
