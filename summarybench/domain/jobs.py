"""Domain entities for external workflow jobs and their results."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowKind(str, Enum):
    """Workflow types the document service knows how to run."""

    DEPOSITION_SUMMARY = "DEPOSITION_SUMMARY"
    DEPOSITION_ANALYSIS = "DEPOSITION_ANALYSIS"
    MEDICAL_RECORD_ANALYSIS = "MEDICAL_RECORD_ANALYSIS"
    DEPOSITION_SUMMARY_NARRATIVE_V2 = "DEPOSITION_SUMMARY_NARRATIVE_V2"
    DEPOSITION_SUMMARY_PAGELINE_V3 = "DEPOSITION_SUMMARY_PAGELINE_V3"
    HEARING_SUMMARY_V2 = "HEARING_SUMMARY_V2"
    TRIAL_SUMMARY_V2 = "TRIAL_SUMMARY_V2"
    TRIAL_DAILIES_V2 = "TRIAL_DAILIES_V2"
    MEDICAL_CHRONOLOGY_V2 = "MEDICAL_CHRONOLOGY_V2"
    MEDICAL_NARRATIVE = "MEDICAL_NARRATIVE"
    ARBITRATION_SUMMARY_V2 = "ARBITRATION_SUMMARY_V2"
    EXHIBIT_LIST = "EXHIBIT_LIST"

    @property
    def input_type(self) -> str:
        """Input type the workflow service expects for this kind."""

        name = self.value
        if "DEPOSITION" in name:
            return "deposition_summary"
        if "MEDICAL" in name:
            return "medical_records"
        if "HEARING" in name:
            return "hearing_summary"
        if "TRIAL" in name:
            return "trial_summary"
        if "ARBITRATION" in name:
            return "arbitration_summary"
        if "EXHIBIT" in name:
            return "exhibit_list"
        return "document_ids"


class JobState(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        # TIMED_OUT is local only; the remote job may still finish
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

_EXTERNAL_STATUS_MAP: dict[str, JobState] = {
    "QUEUED": JobState.SUBMITTED,
    "PENDING": JobState.SUBMITTED,
    "SUBMITTED": JobState.SUBMITTED,
    "IN_PROGRESS": JobState.RUNNING,
    "RUNNING": JobState.RUNNING,
    "PROCESSING": JobState.RUNNING,
    "COMPLETED": JobState.COMPLETED,
    "SUCCEEDED": JobState.COMPLETED,
    "FAILED": JobState.FAILED,
    "ERROR": JobState.FAILED,
    "CANCELLED": JobState.CANCELLED,
    "CANCELED": JobState.CANCELLED,
}


def translate_status(external: str | None) -> JobState:
    """Map the workflow service's status vocabulary onto :class:`JobState`."""

    key = (external or "").strip().upper()
    state = _EXTERNAL_STATUS_MAP.get(key)
    if state is None:
        LOGGER.warning("Unknown workflow status %r, treating as running", external)
        return JobState.RUNNING
    return state


@dataclass(slots=True)
class Job:
    """One invocation of the workflow service for a (document, model) pair."""

    kind: WorkflowKind
    model: str
    job_id: str | None = None
    state: JobState = JobState.SUBMITTED
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    def transition(self, state: JobState, *, error: str | None = None, at: datetime | None = None) -> bool:
        """Move to ``state`` unless the job already reached a terminal state.

        Returns True when the state actually changed.
        """

        if self.state.is_terminal:
            if state != self.state:
                LOGGER.warning(
                    "Ignoring transition of job %s from terminal %s to %s",
                    self.job_id,
                    self.state.value,
                    state.value,
                )
            return False
        if state == self.state and error is None:
            return False

        self.state = state
        if error is not None:
            self.error = error
        if state.is_terminal:
            self.completed_at = at or utcnow()
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "model": self.model,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class ExtractionMethod(str, Enum):
    """How result text was obtained.

    ``ARTIFACT_TEXT`` extends the three extraction paths: the workflow returned a
    JSON or text artifact, so no PDF extraction ran at all.
    """

    STRUCTURAL = "structural"
    VISION = "vision"
    RAW_FALLBACK = "raw-fallback"
    ARTIFACT_TEXT = "artifact-text"


@dataclass(slots=True)
class ExtractionResult:
    """Text materialised from a completed job's result artifact."""

    content: str
    method: ExtractionMethod
    size_bytes: int
    char_count: int
    low_confidence: bool = False
    short_content: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "method": self.method.value,
            "size_bytes": self.size_bytes,
            "char_count": self.char_count,
            "low_confidence": self.low_confidence,
            "short_content": self.short_content,
        }


@dataclass(slots=True)
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float | None = None
    duration_ms: int | None = None
    estimated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "estimated": self.estimated,
        }


COMPLETED_WITHOUT_CONTENT = "completed-without-content"


@dataclass(slots=True)
class JobRecord:
    """Externally visible unit written back for one (document, model) pair."""

    document_id: str
    model: str
    job: Job
    extraction: ExtractionResult | None = None
    usage: UsageStats | None = None
    error: str | None = None
    content_error: dict[str, Any] | None = None
    source_chars: int | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.document_id, self.model)

    @property
    def has_content(self) -> bool:
        # low-confidence partial text is kept for inspection but does not count
        return self.extraction is not None and not self.extraction.low_confidence

    @property
    def phase(self) -> str:
        if self.job.state == JobState.COMPLETED and not self.has_content and self.content_error:
            return COMPLETED_WITHOUT_CONTENT
        return self.job.state.value

    def touch(self) -> None:
        self.updated_at = utcnow()

    def copy(self) -> "JobRecord":
        return replace(
            self,
            job=replace(self.job),
            extraction=replace(self.extraction) if self.extraction else None,
            usage=replace(self.usage) if self.usage else None,
            content_error=dict(self.content_error) if self.content_error else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "model": self.model,
            "phase": self.phase,
            "job": self.job.to_dict(),
            "extraction": self.extraction.to_dict() if self.extraction else None,
            "usage": self.usage.to_dict() if self.usage else None,
            "error": self.error,
            "content_error": self.content_error,
            "source_chars": self.source_chars,
            "updated_at": self.updated_at.isoformat(),
        }
