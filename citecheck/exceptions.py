"""
Exception hierarchy for citecheck.

Every error carries a human-readable message plus a details dict so that
queue items and job diagnostics can record structured context.
"""

from typing import Any, Optional


class CitationCheckError(Exception):
    """Base exception for all citecheck errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize base exception with message and optional context.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional context for debugging
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidCitationDocumentError(CitationCheckError):
    """Raised when a citation document is structurally unusable."""


# --- Evaluator errors ---

class EvaluatorError(CitationCheckError):
    """Raised when an evaluator agent call fails."""

    retryable: bool = True

    def __init__(
        self,
        message: str,
        agent: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if agent:
            details["agent"] = agent
        if status_code is not None:
            details["status_code"] = status_code
        self.agent = agent
        self.status_code = status_code
        super().__init__(message, details)


class RetryableEvaluatorError(EvaluatorError):
    """Transient evaluator failure (rate limit, timeout, 5xx, connection)."""

    retryable = True


class TerminalEvaluatorError(EvaluatorError):
    """Evaluator failure that retrying cannot fix (4xx auth or validation)."""

    retryable = False


# --- Persistence errors ---

class PersistenceError(CitationCheckError):
    """Raised when a store read or write fails."""


class ResultVerificationError(PersistenceError):
    """Raised when a written tier result cannot be read back."""

    def __init__(self, document_id: str, citation_id: str, tier: str) -> None:
        super().__init__(
            f"Result for citation {citation_id} ({tier}) not found after write",
            {"document_id": document_id, "citation_id": citation_id, "tier": tier},
        )


class ConcurrentUpdateError(PersistenceError):
    """Raised when optimistic document updates keep conflicting."""


# --- Lookup errors ---

class DocumentNotFoundError(CitationCheckError):
    """Raised when a citation document does not exist."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}", {"document_id": document_id})


class CitationNotFoundError(CitationCheckError):
    """Raised when a citation id is not present in its document."""

    def __init__(self, citation_id: str, document_id: Optional[str] = None) -> None:
        details = {"citation_id": citation_id}
        if document_id:
            details["document_id"] = document_id
        super().__init__(f"Citation not found: {citation_id}", details)


class JobNotFoundError(CitationCheckError):
    """Raised when a validation job does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Validation job not found: {job_id}", {"job_id": job_id})


class JobAlreadyActiveError(CitationCheckError):
    """Raised when a document already has a pending validation job."""

    def __init__(self, document_id: str, job_id: str) -> None:
        super().__init__(
            f"Document {document_id} already has an active validation job",
            {"document_id": document_id, "job_id": job_id},
        )


class ParagraphNotFoundError(CitationCheckError):
    """Raised when a paragraph id is not present in its document."""

    def __init__(self, paragraph_id: str) -> None:
        super().__init__(f"Paragraph not found: {paragraph_id}", {"paragraph_id": paragraph_id})
