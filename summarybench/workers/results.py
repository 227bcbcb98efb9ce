from __future__ import annotations

import logging

from summarybench.core.cost import estimate_usage
from summarybench.core.errors import ExtractionError, OrchestrationError
from summarybench.domain.jobs import ExtractionMethod, ExtractionResult, JobRecord, JobState, UsageStats
from summarybench.extraction.pipeline import TieredExtractor
from summarybench.infrastructure.workflow import DownloadedArtifact, WorkflowClient, WorkflowStatus


LOGGER = logging.getLogger(__name__)


class ResultFetcher:
    """Download and extract a completed job's result into its record.

    Shared by the polling path and the reconciliation sweep. Only the
    record's content, usage and error fields change; the job's state is
    left alone. Insufficient text is kept as a low-confidence extraction next
    to ``content_error`` so the record still reads as missing its content.
    """

    def __init__(self, client: WorkflowClient, extractor: TieredExtractor) -> None:
        self._client = client
        self._extractor = extractor

    def fetch(self, record: JobRecord, status: WorkflowStatus | None = None) -> bool:
        job_id = record.job.job_id
        if not job_id:
            return False
        try:
            artifact = self._client.download_result(job_id)
        except OrchestrationError as exc:
            LOGGER.warning("Download for %s/%s failed: %s", record.document_id, record.model, exc.message)
            record.content_error = exc.to_dict()
            if status is not None and status.usage is not None:
                record.usage = status.usage
            record.touch()
            return False
        return self.apply(record, artifact, status)

    def apply(
        self,
        record: JobRecord,
        artifact: DownloadedArtifact,
        status: WorkflowStatus | None = None,
    ) -> bool:
        try:
            extraction = self._extractor.extract(artifact, job_id=record.job.job_id)
        except ExtractionError as exc:
            LOGGER.warning("Extraction for %s/%s failed: %s", record.document_id, record.model, exc.message)
            error = exc.to_dict()
            error["partial_chars"] = len(exc.partial_text)
            record.content_error = error
            if exc.partial_text:
                record.extraction = ExtractionResult(
                    content=exc.partial_text,
                    method=ExtractionMethod.RAW_FALLBACK,
                    size_bytes=artifact.size_bytes,
                    char_count=len(exc.partial_text),
                    low_confidence=True,
                )
            if status is not None and status.usage is not None:
                record.usage = status.usage
            record.touch()
            return False

        record.extraction = extraction
        record.content_error = None
        record.error = None
        record.usage = self._usage_for(record, status, extraction.char_count)
        record.touch()
        LOGGER.info(
            "Stored %d chars (%s) for %s/%s",
            extraction.char_count,
            extraction.method.value,
            record.document_id,
            record.model,
        )
        return True

    @staticmethod
    def _usage_for(record: JobRecord, status: WorkflowStatus | None, output_chars: int) -> UsageStats:
        if status is not None and status.usage is not None:
            return status.usage
        if record.usage is not None and not record.usage.estimated:
            return record.usage

        duration_ms = None
        job = record.job
        if job.state == JobState.COMPLETED and job.completed_at is not None:
            duration_ms = int((job.completed_at - job.created_at).total_seconds() * 1000)
        return estimate_usage(record.model, record.source_chars or 0, output_chars, duration_ms)
