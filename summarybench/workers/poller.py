"""Drive a submitted workflow job to a terminal state.

Fixed-interval polling for "is it done yet", with exponential backoff only
for transport failures between polls. HTTP-level retries inside each status
read are handled separately by :mod:`summarybench.core.retry`.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from summarybench.core.errors import (
    DownloadCancelledError,
    DownloadError,
    NotFoundError,
    OrchestrationError,
    PollTimeoutError,
    TransportError,
)
from summarybench.domain.jobs import Job, JobState
from summarybench.infrastructure.workflow import DownloadedArtifact, WorkflowClient, WorkflowStatus


LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag; the remote job keeps running regardless."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class PollOutcome:
    job: Job
    status: WorkflowStatus | None = None
    artifact: DownloadedArtifact | None = None
    error: OrchestrationError | None = None
    interrupted: bool = False


class JobPoller:
    def __init__(
        self,
        client: WorkflowClient,
        *,
        interval: float = 2.0,
        budget: float = 20 * 60,
        max_consecutive_errors: int = 5,
        backoff_cap: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self.interval = interval
        self.budget = budget
        self.max_consecutive_errors = max_consecutive_errors
        self.backoff_cap = backoff_cap
        self._sleep = sleep
        self._clock = clock

    def backoff_delay(self, failures: int) -> float:
        return min(self.interval * (2**failures), self.backoff_cap)

    def _apply(self, job: Job, status: WorkflowStatus) -> None:
        error = status.error if status.state in (JobState.FAILED, JobState.CANCELLED) else None
        previous = job.state
        if job.transition(status.state, error=error):
            LOGGER.info("Job %s: %s -> %s", job.job_id, previous.value, job.state.value)

    def check_once(self, job: Job) -> WorkflowStatus:
        """Single status read, applied to ``job``."""

        if not job.job_id:
            raise NotFoundError("Job has no workflow id to check")
        status = self._client.get_status(job.job_id)
        self._apply(job, status)
        return status

    def run(
        self,
        job: Job,
        *,
        download: bool = True,
        cancel: CancellationToken | None = None,
        on_status: Callable[[WorkflowStatus], None] | None = None,
    ) -> PollOutcome:
        if not job.job_id:
            raise NotFoundError("Job has no workflow id to poll")

        started = self._clock()
        failures = 0
        status: WorkflowStatus | None = None

        while True:
            if cancel is not None and cancel.cancelled:
                LOGGER.info("Polling of job %s cancelled locally", job.job_id)
                return PollOutcome(job=job, status=status, interrupted=True)

            elapsed = self._clock() - started
            if elapsed >= self.budget:
                job.transition(JobState.TIMED_OUT)
                LOGGER.warning("Job %s still %s after %.0fs; giving up locally", job.job_id, job.state.value, elapsed)
                return PollOutcome(
                    job=job,
                    status=status,
                    error=PollTimeoutError(
                        f"Poll budget of {self.budget:.0f}s elapsed",
                        job_id=job.job_id,
                        elapsed_seconds=elapsed,
                    ),
                )

            try:
                status = self._client.get_status(job.job_id)
            except TransportError as exc:
                failures += 1
                if failures > self.max_consecutive_errors:
                    LOGGER.error("Job %s: %d consecutive poll failures, stopping", job.job_id, failures)
                    exc.job_id = exc.job_id or job.job_id
                    raise
                delay = self.backoff_delay(failures)
                LOGGER.warning(
                    "Job %s: poll failed (%d/%d), backing off %.1fs: %s",
                    job.job_id,
                    failures,
                    self.max_consecutive_errors,
                    delay,
                    exc.message,
                )
                self._sleep(delay)
                continue

            failures = 0
            self._apply(job, status)
            if on_status is not None:
                on_status(status)

            if status.state == JobState.COMPLETED:
                if not download:
                    return PollOutcome(job=job, status=status)
                if cancel is not None and cancel.cancelled:
                    return PollOutcome(job=job, status=status, interrupted=True)
                should_stop = (lambda: cancel.cancelled) if cancel is not None else None
                try:
                    artifact = self._client.download_result(job.job_id, should_stop=should_stop)
                except DownloadCancelledError:
                    return PollOutcome(job=job, status=status, interrupted=True)
                except (DownloadError, TransportError) as exc:
                    LOGGER.warning("Job %s completed but download failed: %s", job.job_id, exc.message)
                    return PollOutcome(job=job, status=status, error=exc)
                return PollOutcome(job=job, status=status, artifact=artifact)

            if status.state in (JobState.FAILED, JobState.CANCELLED):
                LOGGER.info("Job %s ended %s: %s", job.job_id, status.state.value, status.error)
                return PollOutcome(job=job, status=status)

            remaining = self.budget - (self._clock() - started)
            self._sleep(max(0.0, min(self.interval, remaining)))
