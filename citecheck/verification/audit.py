"""
Audit logging infrastructure for the validation pipeline.

Provides structured logging with structlog for:
- Panel evaluations (Tier 2 / Tier 3 consensus per citation)
- Evaluator retries and exhausted calls
- Queue item lifecycle (claim, completion, failure, stuck recovery)
- Job completion and failure diagnostics
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel, Field

# Results that indicate something went wrong and should stand out in the log
WARNING_RESULTS = {"FAILED", "RETRY", "SKIPPED", "UNVERIFIED", "RECOVERED"}
ERROR_RESULTS = {"ERROR", "EXHAUSTED"}


def configure_audit_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """
    Configure structlog for audit logging.

    Uses stdout for container compatibility (no file configuration).

    Args:
        json_output: Render JSON lines; otherwise use the console renderer
        level: Minimum level to emit
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_audit_logger(name: str) -> structlog.BoundLogger:
    """
    Get a bound logger with the specified module name.

    Args:
        name: Module name for log attribution (e.g., "consensus_panel")

    Returns:
        BoundLogger instance with module context
    """
    return structlog.get_logger(module=name)


class AuditEvent(BaseModel):
    """Audit event model for pipeline logging."""

    event_type: str = Field(
        description="Type of audit event (e.g., 'tier2_panel', 'queue_item_failed')"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the event"
    )
    input_data: dict = Field(
        default_factory=dict,
        description="Identifiers and inputs involved (citation id, job id, tier, ...)"
    )
    result: str = Field(
        description="Outcome (e.g., CITATION_LIKELY_VALID, COMPLETED, FAILED, RETRY)"
    )
    duration_ms: int = Field(
        default=0,
        ge=0,
        description="Time taken in milliseconds"
    )
    citation_id: Optional[str] = Field(
        default=None,
        description="Citation the event concerns, if any"
    )
    reason: Optional[str] = Field(
        default=None,
        description="Reason for a failure, retry or skip"
    )


def log_audit_event(
    logger: structlog.BoundLogger,
    event: AuditEvent
) -> None:
    """
    Log an audit event with an appropriate log level.

    Args:
        logger: The structlog bound logger
        event: The audit event to log

    Logs at ERROR for exhausted/errored results, WARNING for failures,
    retries and recoveries, INFO otherwise.
    """
    event_dict = event.model_dump()
    # Convert datetime to ISO string for JSON serialization
    event_dict["timestamp"] = event.timestamp.isoformat()
    event_type = event_dict.pop("event_type")

    if event.result in ERROR_RESULTS:
        logger.error(event_type, **event_dict)
    elif event.result in WARNING_RESULTS:
        logger.warning(event_type, **event_dict)
    else:
        logger.info(event_type, **event_dict)
