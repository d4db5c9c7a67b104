"""
Context extraction for citation evaluation.

Rebuilds the prose around a citation (its paragraph, optionally preceded by
the last sentences of the previous paragraph) with markers repaired and
removed. The result is what evaluator agents read.
"""

import logging
import re
from typing import Optional

from citecheck.citations.markers import clean_marker_residue, open_marker, repair_citation_region
from citecheck.citations.models import CitationDocument

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


class ContextExtractor:
    """
    Extracts evaluation context for a citation id.

    Usage:
        extractor = ContextExtractor()
        context = extractor.extract("cit_001", document)
    """

    def __init__(self, include_preceding: bool = True, preceding_sentences: int = 2):
        self.include_preceding = include_preceding
        self.preceding_sentences = preceding_sentences

    def extract(
        self,
        citation_id: str,
        document: CitationDocument,
        include_preceding: Optional[bool] = None
    ) -> str:
        """
        Extract the cleaned context for one citation.

        Args:
            citation_id: Citation to locate
            document: Annotated citation document
            include_preceding: Override the instance default for prepending
                the previous paragraph's last sentences

        Returns:
            Context text, or "" if no marker for the citation exists
        """
        if include_preceding is None:
            include_preceding = self.include_preceding

        marker = open_marker(citation_id)
        paragraph_index = next(
            (i for i, p in enumerate(document.content) if marker in p.text),
            None,
        )
        if paragraph_index is None:
            logger.warning("Citation %s not found in document content", citation_id)
            return ""

        text = document.content[paragraph_index].text
        citation = document.get_citation(citation_id)
        if citation and citation.citation_text:
            repair = repair_citation_region(text, citation_id, citation.citation_text)
            if repair.replaced:
                logger.debug("Repaired malformed markers for %s", citation_id)
            text = repair.text

        context = clean_marker_residue(text)

        if include_preceding and paragraph_index > 0:
            preceding = self._preceding_sentences(document.content[paragraph_index - 1].text)
            if preceding:
                context = f"{preceding}. {context}"

        return context

    def _preceding_sentences(self, text: str) -> str:
        sentences = [
            s.strip()
            for s in _SENTENCE_SPLIT.split(clean_marker_residue(text))
            if s.strip()
        ]
        return ". ".join(sentences[-self.preceding_sentences:])


def extract_context(citation_id: str, document: CitationDocument, include_preceding: bool = True) -> str:
    """Shortcut for ContextExtractor().extract(...)."""
    return ContextExtractor().extract(citation_id, document, include_preceding)
