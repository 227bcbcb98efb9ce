"""Self-healing sweep over job records whose completion may have been missed."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from summarybench.core.errors import OrchestrationError
from summarybench.domain.jobs import JobRecord, JobState
from summarybench.infrastructure.workflow import WorkflowStatus
from summarybench.workers.poller import JobPoller
from summarybench.workers.results import ResultFetcher


LOGGER = logging.getLogger(__name__)

DOWNLOADED = "downloaded"
ALREADY_DONE = "already_done"
STILL_RUNNING = "still_running"
ERRORED = "errored"
SKIPPED = "skipped"


@dataclass(slots=True)
class SweepCounts:
    downloaded: int = 0
    already_done: int = 0
    still_running: int = 0
    errored: int = 0
    skipped: int = 0

    def add(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def to_dict(self) -> dict[str, int]:
        return {
            DOWNLOADED: self.downloaded,
            ALREADY_DONE: self.already_done,
            STILL_RUNNING: self.still_running,
            ERRORED: self.errored,
            SKIPPED: self.skipped,
        }


@dataclass(slots=True)
class SweepReport:
    records: list[JobRecord]
    counts: SweepCounts
    newly_completed: list[JobRecord] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": self.counts.to_dict(),
            "newly_completed": [list(record.key) for record in self.newly_completed],
            "errors": self.errors,
            "records": [record.to_dict() for record in self.records],
        }


class ReconciliationSweep:
    """Re-check outstanding jobs without ever resubmitting them.

    Running the sweep twice with no external change leaves every record as
    it was and performs no downloads on the second pass.
    """

    def __init__(
        self,
        poller: JobPoller,
        fetcher: ResultFetcher,
        *,
        on_completed: Callable[[JobRecord], None] | None = None,
    ) -> None:
        self._poller = poller
        self._fetcher = fetcher
        self._on_completed = on_completed

    def run(self, records: Iterable[JobRecord], *, retry_missing_content: bool = False) -> SweepReport:
        report = SweepReport(records=[], counts=SweepCounts())
        for original in records:
            record = original.copy()
            outcome = self.reconcile_one(record, report, retry_missing_content=retry_missing_content)
            report.counts.add(outcome)
            report.records.append(record)

        LOGGER.info("Reconciliation sweep finished: %s", report.counts.to_dict())
        for record in report.newly_completed:
            if self._on_completed is not None:
                self._on_completed(record)
        return report

    def reconcile_one(
        self,
        record: JobRecord,
        report: SweepReport,
        *,
        retry_missing_content: bool = False,
    ) -> str:
        job = record.job
        if job.state == JobState.COMPLETED and record.has_content:
            return ALREADY_DONE
        if not job.job_id:
            return SKIPPED
        if job.state in (JobState.FAILED, JobState.CANCELLED):
            return ERRORED
        if job.state == JobState.COMPLETED:
            return self._fetch_missing(record, report, retry_missing_content=retry_missing_content)

        previous = job.state
        try:
            status = self._poller.check_once(job)
        except OrchestrationError as exc:
            LOGGER.warning("Status check for %s failed: %s", job.job_id, exc.message)
            report.errors.append({"document_id": record.document_id, "model": record.model, **exc.to_dict()})
            return ERRORED

        if status.state == JobState.COMPLETED:
            record.touch()
            return self._fetch_missing(record, report, retry_missing_content=True, status=status)
        if status.state in (JobState.FAILED, JobState.CANCELLED):
            record.error = status.error or f"Workflow {status.state.value}"
            record.touch()
            return ERRORED
        if job.state != previous:
            record.touch()
        return STILL_RUNNING

    def _fetch_missing(
        self,
        record: JobRecord,
        report: SweepReport,
        *,
        retry_missing_content: bool,
        status: WorkflowStatus | None = None,
    ) -> str:
        # a failed earlier attempt is only retried on request
        if record.content_error is not None and not retry_missing_content:
            return ERRORED
        if self._fetcher.fetch(record, status):
            report.newly_completed.append(record)
            return DOWNLOADED
        report.errors.append(
            {"document_id": record.document_id, "model": record.model, **(record.content_error or {})}
        )
        return ERRORED
