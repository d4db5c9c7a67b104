"""
Document store.

Citation documents are kept as JSON with a version counter. Tier results are
written one citation at a time, addressed by citation id, through an
optimistic compare-and-set on the version so that concurrent workers writing
different citations of the same document never clobber each other.
"""

import logging
import uuid
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from citecheck.citations.models import (
    CitationDocument,
    Tier2Result,
    Tier3Result,
    ValidationTier,
)
from citecheck.exceptions import (
    CitationNotFoundError,
    ConcurrentUpdateError,
    DocumentNotFoundError,
    InvalidCitationDocumentError,
)
from citecheck.jobs.db import utcnow
from citecheck.jobs.orm import DocumentRecord

logger = logging.getLogger(__name__)

TierResult = Union[Tier2Result, Tier3Result]


class WriteOutcome(str, Enum):
    """Outcome of an idempotent tier-result write."""
    WRITTEN = "written"
    ALREADY_PRESENT = "already_present"


class DocumentStore:
    """
    Read and write citation documents by opaque id.

    Usage:
        store = DocumentStore(session_factory)
        doc_id = store.create(document)
        outcome = store.apply_tier_result(doc_id, "cit_001", ValidationTier.TIER2, result)
    """

    def __init__(self, session_factory: sessionmaker, max_write_attempts: int = 10):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy session factory
            max_write_attempts: Compare-and-set attempts before giving up
        """
        self.session_factory = session_factory
        self.max_write_attempts = max_write_attempts

    def create(self, document: CitationDocument, document_id: Optional[str] = None) -> str:
        """
        Store a new document.

        Args:
            document: Document to store
            document_id: Optional id; a UUID is generated when omitted

        Returns:
            The document id
        """
        document_id = document_id or str(uuid.uuid4())
        with self.session_factory() as session:
            session.add(DocumentRecord(
                id=document_id,
                payload=document.model_dump(mode="json"),
                version=1,
            ))
            session.commit()
        logger.info("Stored document %s (%d paragraphs)", document_id, len(document.content))
        return document_id

    def exists(self, document_id: str) -> bool:
        with self.session_factory() as session:
            return session.get(DocumentRecord, document_id) is not None

    def get(self, document_id: str) -> CitationDocument:
        """
        Load a document.

        Raises:
            DocumentNotFoundError: If no document has this id
        """
        document, _ = self.get_with_version(document_id)
        return document

    def get_with_version(self, document_id: str) -> Tuple[CitationDocument, int]:
        with self.session_factory() as session:
            record = session.execute(
                select(DocumentRecord).where(DocumentRecord.id == document_id)
            ).scalar_one_or_none()
            if record is None:
                raise DocumentNotFoundError(document_id)
            try:
                return CitationDocument.model_validate(record.payload), record.version
            except ValidationError as e:
                raise InvalidCitationDocumentError(
                    f"Stored document {document_id} is not a valid citation document",
                    {"document_id": document_id, "errors": e.error_count()},
                ) from e

    def replace(self, document_id: str, document: CitationDocument) -> None:
        """
        Replace a document wholesale (identification runs).

        Callers must ensure no validation job is active for the document.
        """
        self._update(document_id, lambda _: (document, True))

    def apply_tier_result(
        self,
        document_id: str,
        citation_id: str,
        tier: ValidationTier,
        result: TierResult
    ) -> WriteOutcome:
        """
        Write one tier result onto one citation, at most once.

        If the citation already carries a result for the tier, nothing is
        written and ALREADY_PRESENT is returned.

        Args:
            document_id: Owning document
            citation_id: Target citation id
            tier: TIER2 writes ``validation``, TIER3 writes ``tier_3``
            result: Panel result

        Returns:
            WriteOutcome

        Raises:
            DocumentNotFoundError: Unknown document
            CitationNotFoundError: Citation id not in the document
            ConcurrentUpdateError: Compare-and-set kept losing
        """
        def mutate(document: CitationDocument) -> Tuple[CitationDocument, bool]:
            citation = document.get_citation(citation_id)
            if citation is None:
                raise CitationNotFoundError(citation_id, document_id)
            if citation.has_result(tier):
                return document, False
            if tier == ValidationTier.TIER2:
                citation.validation = result
            else:
                citation.tier_3 = result
            return document, True

        written = self._update(document_id, mutate)
        return WriteOutcome.WRITTEN if written else WriteOutcome.ALREADY_PRESENT

    def has_tier_result(self, document_id: str, citation_id: str, tier: ValidationTier) -> bool:
        """Re-read the document and report whether the tier field is populated."""
        document = self.get(document_id)
        citation = document.get_citation(citation_id)
        if citation is None:
            raise CitationNotFoundError(citation_id, document_id)
        return citation.has_result(tier)

    def clear_tier_results(self, document_id: str, citation_ids: Iterable[str]) -> int:
        """
        Remove the Tier 2 and Tier 3 results of the given citations.

        Returns:
            Number of citations that had something cleared
        """
        wanted = set(citation_ids)
        cleared = []

        def mutate(document: CitationDocument) -> Tuple[CitationDocument, bool]:
            cleared.clear()
            for citation in document.citations:
                if citation.id in wanted and (citation.validation or citation.tier_3):
                    citation.validation = None
                    citation.tier_3 = None
                    cleared.append(citation.id)
            return document, bool(cleared)

        self._update(document_id, mutate)
        return len(cleared)

    def _update(
        self,
        document_id: str,
        mutate: Callable[[CitationDocument], Tuple[CitationDocument, bool]]
    ) -> bool:
        """
        Read-modify-write with compare-and-set on the version column.

        mutate returns (document, changed); nothing is written when
        changed is False.
        """
        for attempt in range(1, self.max_write_attempts + 1):
            document, version = self.get_with_version(document_id)
            document, changed = mutate(document)
            if not changed:
                return False

            with self.session_factory() as session:
                outcome = session.execute(
                    update(DocumentRecord)
                    .where(DocumentRecord.id == document_id, DocumentRecord.version == version)
                    .values(
                        payload=document.model_dump(mode="json"),
                        version=version + 1,
                        updated_at=utcnow(),
                    )
                )
                session.commit()

            if outcome.rowcount == 1:
                return True
            logger.debug("Version conflict on document %s (attempt %d)", document_id, attempt)

        raise ConcurrentUpdateError(
            f"Document {document_id} changed concurrently {self.max_write_attempts} times",
            {"document_id": document_id},
        )
