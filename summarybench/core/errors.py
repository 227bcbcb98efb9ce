"""Error taxonomy for the workflow orchestration core.

Every failure path raises a subclass of :class:`OrchestrationError` so callers
(the reconciliation sweep in particular) can decide mechanically whether to
retry, skip or alert a human without matching on message text.
"""
from __future__ import annotations

from typing import Any


TRANSIENT_CONFLICT_MARKERS = ("TransactionConflict", "ConditionalCheckFailed")


class OrchestrationError(Exception):
    """Base error carrying a stable ``kind`` and the affected job id."""

    kind = "orchestration"
    retryable = False

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "job_id": self.job_id,
            "retryable": self.retryable,
        }


class ConfigurationError(OrchestrationError):
    """Raised when a client is constructed without the settings it needs."""

    kind = "configuration"


class SubmissionError(OrchestrationError):
    """The job could not be created; safe to retry by resubmitting."""

    kind = "submission"
    retryable = True

    def __init__(self, message: str, *, job_id: str | None = None, unconfigured: bool = False) -> None:
        super().__init__(message, job_id=job_id)
        self.unconfigured = unconfigured


class TransportError(OrchestrationError):
    """HTTP or network failure talking to a collaborator service."""

    kind = "transport"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, job_id=job_id)
        self.status_code = status_code
        self.body = body

    @property
    def transient(self) -> bool:
        """True for network failures, throttling and server-side errors."""

        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class NonJsonResponseError(TransportError):
    """The service answered with HTML or plain text where JSON was expected."""

    kind = "non_json_response"

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        status_code: int | None = None,
        content_type: str = "",
        preview: str = "",
    ) -> None:
        super().__init__(message, job_id=job_id, status_code=status_code, body=preview)
        self.content_type = content_type
        self.preview = preview

    @property
    def is_html(self) -> bool:
        head = self.preview.lstrip().lower()
        return head.startswith("<!doctype") or head.startswith("<html")

    @property
    def transient(self) -> bool:
        # an HTML error page is the degraded-service signal; always worth another try
        return True


class NotFoundError(OrchestrationError):
    """The service does not know the requested job or document."""

    kind = "not_found"


class DownloadError(OrchestrationError):
    """Base class for failures in the result download indirection."""

    kind = "download"
    retryable = True


class NoArtifactError(DownloadError):
    kind = "no_artifact"


class NoDownloadUrlError(DownloadError):
    kind = "no_download_url"


class BlobFetchError(DownloadError):
    kind = "blob_fetch"

    def __init__(self, message: str, *, job_id: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, job_id=job_id)
        self.status_code = status_code


class DownloadCancelledError(OrchestrationError):
    """Local cancellation stopped a download between steps; the job is untouched."""

    kind = "cancelled"
    retryable = True


class ExtractionError(OrchestrationError):
    """Neither structural nor vision extraction produced usable text.

    The job itself is still completed upstream; ``partial_text`` keeps whatever
    low-confidence text the structural pass recovered.
    """

    kind = "extraction"
    retryable = True

    def __init__(self, message: str, *, job_id: str | None = None, partial_text: str = "") -> None:
        super().__init__(message, job_id=job_id)
        self.partial_text = partial_text


class PollTimeoutError(OrchestrationError):
    """The local poll budget elapsed before the job reached a terminal state."""

    kind = "timeout"
    retryable = True

    def __init__(self, message: str, *, job_id: str | None = None, elapsed_seconds: float = 0.0) -> None:
        super().__init__(message, job_id=job_id)
        self.elapsed_seconds = elapsed_seconds


def is_transient_conflict(message: str | None) -> bool:
    """Return True when a storage error message names a retryable write conflict."""

    if not message:
        return False
    return any(marker in message for marker in TRANSIENT_CONFLICT_MARKERS)


__all__ = [
    "BlobFetchError",
    "ConfigurationError",
    "DownloadCancelledError",
    "DownloadError",
    "ExtractionError",
    "NoArtifactError",
    "NoDownloadUrlError",
    "NonJsonResponseError",
    "NotFoundError",
    "OrchestrationError",
    "PollTimeoutError",
    "SubmissionError",
    "TransportError",
    "is_transient_conflict",
]
