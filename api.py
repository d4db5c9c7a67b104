# api.py
# CITECHECK: citation identification + tiered validation service
# Authentication, upload and report rendering live outside this service.

import logging
from functools import lru_cache
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from citecheck.citations import (
    CitationDocument,
    ComparisonResult,
    ContentParagraph,
    DocumentMetadata,
)
from citecheck.config import get_settings
from citecheck.exceptions import (
    CitationCheckError,
    CitationNotFoundError,
    DocumentNotFoundError,
    InvalidCitationDocumentError,
    JobAlreadyActiveError,
    JobNotFoundError,
    ParagraphNotFoundError,
)
from citecheck.jobs import (
    JobStatusReport,
    PipelineRun,
    QueueWorker,
    ValidationOrchestrator,
    WorkerResult,
    build_orchestrator,
)
from citecheck.verification.audit import configure_audit_logging

# 1. SETUP
settings = get_settings()
configure_audit_logging(json_output=settings.log_json)
logger = logging.getLogger(__name__)

app = FastAPI(title="citecheck", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_orchestrator() -> ValidationOrchestrator:
    """Process-wide orchestrator; overridden in tests."""
    return build_orchestrator(settings)


# 2. ERROR MAPPING
NOT_FOUND_ERRORS = (DocumentNotFoundError, CitationNotFoundError, JobNotFoundError, ParagraphNotFoundError)


def to_http_error(e: CitationCheckError) -> HTTPException:
    if isinstance(e, NOT_FOUND_ERRORS):
        return HTTPException(404, e.message)
    if isinstance(e, JobAlreadyActiveError):
        return HTTPException(409, {"message": e.message, **e.details})
    if isinstance(e, InvalidCitationDocumentError):
        return HTTPException(422, e.message)
    return HTTPException(500, e.message)


# 3. DATA MODELS
class CreateDocumentRequest(BaseModel):
    document_id: Optional[str] = Field(default=None, description="Optional id; generated when omitted")
    filename: Optional[str] = None
    content: List[ContentParagraph] = Field(min_length=1)


class CreateDocumentResponse(BaseModel):
    document_id: str
    paragraphs: int


class IdentifyResponse(BaseModel):
    document_id: str
    method: str
    total_citations: int
    document: CitationDocument


class ContextResponse(BaseModel):
    citation_id: str
    context: str


class StartJobResponse(BaseModel):
    job_id: str
    status: str
    tier2_total: int


# 4. ENDPOINTS
@app.get("/")
def health():
    return {"status": "citecheck online"}


@app.post("/documents", response_model=CreateDocumentResponse)
def create_document(req: CreateDocumentRequest, orchestrator: ValidationOrchestrator = Depends(get_orchestrator)):
    document = CitationDocument(
        metadata=DocumentMetadata(filename=req.filename),
        content=req.content,
    )
    document_id = orchestrator.create_document(document, req.document_id)
    return CreateDocumentResponse(document_id=document_id, paragraphs=len(document.content))


@app.get("/documents/{document_id}", response_model=CitationDocument)
def get_document(document_id: str, orchestrator: ValidationOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_document(document_id)
    except CitationCheckError as e:
        raise to_http_error(e)


@app.post("/documents/{document_id}/identify", response_model=IdentifyResponse)
def identify_document(
    document_id: str,
    method: Literal["custom", "eyecite"] = Query(default="custom"),
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    try:
        document = orchestrator.identify_document(document_id, method)
    except CitationCheckError as e:
        raise to_http_error(e)
    return IdentifyResponse(
        document_id=document_id,
        method=method,
        total_citations=document.metadata.total_citations,
        document=document,
    )


@app.post("/documents/{document_id}/paragraphs/{paragraph_id}/identify", response_model=CitationDocument)
def identify_paragraph(
    document_id: str,
    paragraph_id: str,
    method: Optional[Literal["custom", "eyecite"]] = Query(default=None),
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.reidentify_paragraph(document_id, paragraph_id, method)
    except CitationCheckError as e:
        raise to_http_error(e)


@app.get("/documents/{document_id}/identification-comparison", response_model=ComparisonResult)
def identification_comparison(document_id: str, orchestrator: ValidationOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.compare_identification_methods(document_id)
    except CitationCheckError as e:
        raise to_http_error(e)


@app.get("/documents/{document_id}/citations/{citation_id}/context", response_model=ContextResponse)
def citation_context(
    document_id: str,
    citation_id: str,
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    try:
        context = orchestrator.get_citation_context(document_id, citation_id)
    except CitationCheckError as e:
        raise to_http_error(e)
    return ContextResponse(citation_id=citation_id, context=context)


@app.post("/documents/{document_id}/validate", response_model=StartJobResponse)
def validate_document(document_id: str, orchestrator: ValidationOrchestrator = Depends(get_orchestrator)):
    try:
        job = orchestrator.start_job(document_id)
    except CitationCheckError as e:
        raise to_http_error(e)
    return StartJobResponse(job_id=job.id, status=job.status.value, tier2_total=job.tier2_total)


@app.post("/documents/{document_id}/citations/{citation_id}/revalidate", response_model=StartJobResponse)
def revalidate_citation(
    document_id: str,
    citation_id: str,
    force_tier3: bool = Query(default=False),
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    try:
        job = orchestrator.revalidate_citation(document_id, citation_id, force_tier3=force_tier3)
    except CitationCheckError as e:
        raise to_http_error(e)
    return StartJobResponse(job_id=job.id, status=job.status.value, tier2_total=job.tier2_total)


@app.post("/documents/{document_id}/run-full-pipeline", response_model=PipelineRun)
def run_full_pipeline(
    document_id: str,
    method: Literal["custom", "eyecite"] = Query(default="custom"),
    reidentify: bool = Query(default=False),
    force_tier3: bool = Query(default=False),
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.run_full_pipeline(
            document_id, method, reidentify=reidentify, force_tier3=force_tier3
        )
    except CitationCheckError as e:
        raise to_http_error(e)


@app.get("/jobs/{job_id}", response_model=JobStatusReport)
def job_status(job_id: str, orchestrator: ValidationOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_job_status(job_id)
    except CitationCheckError as e:
        raise to_http_error(e)


@app.post("/worker/process-queue", response_model=WorkerResult)
def process_queue(
    max_items: int = Query(default=settings.worker_batch_size, ge=1, le=50),
    orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
):
    worker = QueueWorker(orchestrator, batch_size=max_items)
    try:
        return worker.process_batch()
    except CitationCheckError as e:
        logger.error("Queue processing failed: %s", e)
        raise to_http_error(e)
