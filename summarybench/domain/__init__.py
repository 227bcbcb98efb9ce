"""Domain layer definitions."""

from .jobs import (
    COMPLETED_WITHOUT_CONTENT,
    ExtractionMethod,
    ExtractionResult,
    Job,
    JobRecord,
    JobState,
    UsageStats,
    WorkflowKind,
    translate_status,
)

__all__ = [
    "COMPLETED_WITHOUT_CONTENT",
    "ExtractionMethod",
    "ExtractionResult",
    "Job",
    "JobRecord",
    "JobState",
    "UsageStats",
    "WorkflowKind",
    "translate_status",
]
