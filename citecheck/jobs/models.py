"""
Pydantic models reported by the job orchestrator and queue worker.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from citecheck.citations.models import ValidationTier
from citecheck.jobs.orm import JobStatus
from citecheck.verification.usage import UsageSummary


class TierProgress(BaseModel):
    """Progress of one tier within a job."""
    total: int = Field(default=0, ge=0, description="Items created for this tier")
    completed: int = Field(default=0, ge=0, description="Items completed for this tier")
    percentage: float = Field(default=0.0, ge=0.0, le=100.0, description="completed / total * 100")
    pending: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed_items: int = Field(default=0, ge=0, description="Items currently in completed state")
    failed: int = Field(default=0, ge=0)


class UnresolvedCitation(BaseModel):
    """A citation left without a required tier result."""
    citation_id: str
    tier: ValidationTier


class JobStatusReport(BaseModel):
    """User-facing view of a validation job."""
    job_id: str
    document_id: str
    status: JobStatus
    force_tier3: bool = False
    tier2: TierProgress
    tier3: TierProgress
    error: Optional[str] = None
    unresolved: List[UnresolvedCitation] = Field(
        default_factory=list,
        description="Populated when the job failed with retries exhausted"
    )
    usage: Optional[UsageSummary] = Field(
        default=None,
        description="Tokens and cost of the panel calls made for this job, once it has finished"
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PipelineRun(BaseModel):
    """Outcome of identifying and starting validation in one call."""
    document_id: str
    job_id: str
    status: JobStatus
    identified: bool = Field(description="Identification ran as part of this call")
    total_citations: int = Field(ge=0)
    tier2_total: int = Field(ge=0)


class WorkerResult(BaseModel):
    """Summary of one worker batch."""
    processed: int = Field(default=0, ge=0, description="Items completed in this batch")
    failed: int = Field(default=0, ge=0, description="Items that failed in this batch")
    recovered: int = Field(default=0, ge=0, description="Stuck items returned to pending")
    requeued: int = Field(default=0, ge=0, description="Failed items returned to pending")
    remaining: int = Field(default=0, ge=0, description="Pending items left after the batch")
    has_more: bool = False
    item_ids: List[str] = Field(default_factory=list, description="Ids of the completed items")
