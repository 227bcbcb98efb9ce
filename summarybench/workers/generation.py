from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from summarybench.core.errors import OrchestrationError, PollTimeoutError, SubmissionError
from summarybench.domain.jobs import Job, JobRecord, JobState, WorkflowKind
from summarybench.infrastructure.records import JobRecordRepository
from summarybench.infrastructure.workflow import WorkflowClient
from summarybench.workers.poller import CancellationToken, JobPoller
from summarybench.workers.results import ResultFetcher


LOGGER = logging.getLogger(__name__)


class GenerationWorker:
    """Submits one job per model and drives them with a bounded worker pool."""

    def __init__(
        self,
        client: WorkflowClient,
        poller: JobPoller,
        fetcher: ResultFetcher,
        repository: JobRecordRepository,
        *,
        max_concurrent: int = 4,
    ) -> None:
        self._client = client
        self._poller = poller
        self._fetcher = fetcher
        self._repository = repository
        self.max_concurrent = max(1, max_concurrent)
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _bound(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._loop = loop
        return self._semaphore

    # ------------------------------------------------------------------
    # blocking steps, run in worker threads
    # ------------------------------------------------------------------
    def submit_one(
        self,
        document_id: str,
        kind: WorkflowKind,
        document_refs: list[str],
        model: str,
        *,
        name: str | None = None,
        source_chars: int | None = None,
    ) -> JobRecord:
        record = JobRecord(
            document_id=document_id,
            model=model,
            job=Job(kind=kind, model=model),
            source_chars=source_chars,
        )
        try:
            record.job.job_id = self._client.create_job(kind, document_refs, model, name=name)
        except SubmissionError as exc:
            LOGGER.warning("Submission for %s/%s failed: %s", document_id, model, exc.message)
            record.error = exc.message
            record.job.transition(JobState.FAILED, error=exc.message)
        self._repository.put(record)
        return record

    def submit(
        self,
        document_id: str,
        kind: WorkflowKind,
        document_refs: Iterable[str],
        models: Iterable[str],
        *,
        name: str | None = None,
        source_chars: int | None = None,
    ) -> list[JobRecord]:
        refs = list(document_refs)
        return [
            self.submit_one(document_id, kind, refs, model, name=name, source_chars=source_chars)
            for model in models
        ]

    def drive(self, record: JobRecord, cancel: CancellationToken | None = None) -> JobRecord:
        """Poll one submitted record to a terminal state and store its content."""

        def _persist(_status: object) -> None:
            self._repository.put(record)

        try:
            outcome = self._poller.run(record.job, cancel=cancel, on_status=_persist)
        except OrchestrationError as exc:
            LOGGER.error("Polling %s/%s stopped: %s", record.document_id, record.model, exc.message)
            record.error = exc.message
            self._repository.put(record)
            return record

        if outcome.artifact is not None:
            self._fetcher.apply(record, outcome.artifact, outcome.status)
        elif isinstance(outcome.error, PollTimeoutError):
            record.error = outcome.error.message
        elif outcome.error is not None:
            record.content_error = outcome.error.to_dict()
            if outcome.status is not None and outcome.status.usage is not None:
                record.usage = outcome.status.usage
        elif record.job.state in (JobState.FAILED, JobState.CANCELLED):
            record.error = record.job.error or f"Workflow {record.job.state.value}"

        self._repository.put(record)
        return record

    # ------------------------------------------------------------------
    # async entry point
    # ------------------------------------------------------------------
    async def generate(
        self,
        document_id: str,
        kind: WorkflowKind,
        document_refs: Iterable[str],
        models: Iterable[str],
        *,
        name: str | None = None,
        source_chars: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[JobRecord]:
        records = await asyncio.to_thread(
            self.submit,
            document_id,
            kind,
            list(document_refs),
            list(models),
            name=name,
            source_chars=source_chars,
        )
        semaphore = self._bound()

        async def _drive(record: JobRecord) -> JobRecord:
            if not record.job.job_id:
                return record
            async with semaphore:
                return await asyncio.to_thread(self.drive, record, cancel)

        return list(await asyncio.gather(*(_drive(record) for record in records)))
