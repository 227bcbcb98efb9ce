"""Client for the external document workflow service."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence
from urllib.parse import unquote, urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from summarybench.core.cost import CONTROL_MODEL
from summarybench.core.errors import (
    BlobFetchError,
    ConfigurationError,
    DownloadCancelledError,
    NoArtifactError,
    NoDownloadUrlError,
    NonJsonResponseError,
    NotFoundError,
    OrchestrationError,
    SubmissionError,
    TransportError,
)
from summarybench.core.retry import DEFAULT_POLICY, RetryPolicy, call_with_retry
from summarybench.domain.jobs import JobState, UsageStats, WorkflowKind, translate_status


LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api-staging.casemarkai.com"
PREVIEW_CHARS = 200

RESULT_ARTIFACT = "WORKFLOW_RESULT"
REPORT_ARTIFACT = "WORKFLOW_REPORT"
INPUT_ARTIFACT = "WORKFLOW_INPUT"
PDF_MIME = "application/pdf"
MACHINE_READABLE_MIMES = ("application/json", "text/")


# ----------------------------------------------------------------------
# wire payloads
# ----------------------------------------------------------------------
class _WirePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WorkflowUsagePayload(_WirePayload):
    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    total_tokens: int | None = Field(default=None, alias="totalTokens")


class WorkflowStatusPayload(_WirePayload):
    id: str | None = None
    status: str | None = None
    error: str | None = None
    usage: WorkflowUsagePayload | None = None
    cost: float | None = None
    duration_ms: int | None = Field(default=None, alias="durationMs")
    model: str | None = None


class ManifestDocument(_WirePayload):
    id: str
    type: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    filename: str | None = None

    @property
    def is_machine_readable(self) -> bool:
        mime = (self.mime_type or "").lower()
        return any(mime.startswith(prefix) for prefix in MACHINE_READABLE_MIMES)

    @property
    def is_pdf(self) -> bool:
        return (self.mime_type or "").lower() == PDF_MIME


class DocumentMetadata(_WirePayload):
    id: str | None = None
    filename: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    download_url: str | None = Field(default=None, alias="downloadUrl")


# ----------------------------------------------------------------------
# results
# ----------------------------------------------------------------------
@dataclass(slots=True)
class WorkflowStatus:
    job_id: str
    state: JobState
    raw_status: str | None = None
    error: str | None = None
    usage: UsageStats | None = None
    model: str | None = None


@dataclass(slots=True)
class DownloadedArtifact:
    data: bytes
    document_id: str
    filename: str | None
    mime_type: str | None
    artifact_type: str | None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def select_artifact(documents: Sequence[ManifestDocument]) -> ManifestDocument:
    """Pick the best result artifact from a job manifest.

    Priority: machine-readable result, then the PDF report, then any
    non-input PDF. Ties keep manifest order.
    """

    tiers: tuple[Callable[[ManifestDocument], bool], ...] = (
        lambda doc: doc.type == RESULT_ARTIFACT and doc.is_machine_readable,
        lambda doc: doc.type == REPORT_ARTIFACT and doc.is_pdf,
        lambda doc: doc.type != INPUT_ARTIFACT and doc.is_pdf,
    )
    for matches in tiers:
        for document in documents:
            if matches(document):
                return document
    if not documents:
        raise NoArtifactError("Workflow manifest lists no documents")
    raise NoArtifactError(
        "No usable artifact in manifest: "
        + ", ".join(f"{doc.type}/{doc.mime_type}" for doc in documents)
    )


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
        return payload["data"]
    return payload


def _filename_from_url(url: str) -> str:
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or "document.pdf"


class WorkflowClient:
    """Creates workflow jobs, reads their status and downloads their results."""

    def __init__(
        self,
        api_key: str | None,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 60.0,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
    ) -> None:
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ConfigurationError("api_base must include scheme and host")

        self._api_key = api_key or ""
        self._api_base = api_base.rstrip("/")
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_client = http_client is None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _require_key(self) -> None:
        if not self._api_key:
            raise ConfigurationError("Workflow service API key is not configured")

    def _send(self, method: str, path: str, *, job_id: str | None = None, **kwargs: Any) -> Any:
        url = f"{self._api_base}{path}"
        started = time.monotonic()
        try:
            response = self._client.request(method, url, headers={"X-API-Key": self._api_key}, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.warning("%s %s failed after %.0fms: %s", method, path, (time.monotonic() - started) * 1000, exc)
            raise TransportError(f"{method} {path} failed: {exc}", job_id=job_id) from exc

        LOGGER.info("%s %s -> %s (%.0fms)", method, path, response.status_code, (time.monotonic() - started) * 1000)

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} returned 404", job_id=job_id)

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type.lower():
            preview = response.text[:PREVIEW_CHARS]
            error = NonJsonResponseError(
                f"{method} {path} returned {content_type or 'no content type'} instead of JSON",
                job_id=job_id,
                status_code=response.status_code,
                content_type=content_type,
                preview=preview,
            )
            LOGGER.error(
                "Non-JSON response from %s %s (status %s, html=%s): %s",
                method,
                path,
                response.status_code,
                error.is_html,
                preview,
            )
            raise error

        if response.status_code >= 400:
            body = response.text[:PREVIEW_CHARS]
            raise TransportError(
                f"{method} {path} returned {response.status_code}: {body}",
                job_id=job_id,
                status_code=response.status_code,
                body=body,
            )

        try:
            return _unwrap(response.json())
        except ValueError as exc:
            raise NonJsonResponseError(
                f"{method} {path} returned malformed JSON",
                job_id=job_id,
                status_code=response.status_code,
                content_type=content_type,
                preview=response.text[:PREVIEW_CHARS],
            ) from exc

    def _request(self, method: str, path: str, *, job_id: str | None = None, **kwargs: Any) -> Any:
        return call_with_retry(
            lambda: self._send(method, path, job_id=job_id, **kwargs),
            policy=self._retry_policy,
            sleep=self._sleep,
            describe=f"{method} {path}",
        )

    def _stage_document(self, ref: str) -> str:
        """Turn a URL reference into a workflow input document id.

        Plain ids are returned unchanged.
        """

        if not ref.startswith(("http://", "https://")):
            return ref

        data = self.fetch_presigned(ref)
        filename = _filename_from_url(ref)
        payload = self._request(
            "POST",
            "/api/v1/documents",
            files={"file": (filename, data, PDF_MIME)},
            data={"category": INPUT_ARTIFACT},
        )
        document_id = payload.get("id") if isinstance(payload, dict) else None
        if not document_id:
            raise SubmissionError(f"Document upload for {filename} returned no id")
        LOGGER.info("Staged %s as workflow input %s (%d bytes)", filename, document_id, len(data))
        return str(document_id)

    @staticmethod
    def _build_body(
        kind: WorkflowKind,
        document_ids: list[str],
        model: str,
        name: str | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "workflowType": kind.value,
            "inputs": {
                "type": kind.input_type,
                "documentIds": document_ids,
                "appendPageLine": True,
                "appendTranscript": True,
                "pageLineSummaryDensity": "PAGE_LINE_10_1",
            },
        }
        if name:
            body["name"] = name
        if model and model != CONTROL_MODEL:
            body["model"] = model
        return body

    @staticmethod
    def _usage_from(payload: WorkflowStatusPayload) -> UsageStats | None:
        if payload.usage is None and payload.cost is None:
            return None
        usage = payload.usage or WorkflowUsagePayload()
        total = usage.total_tokens if usage.total_tokens is not None else usage.input_tokens + usage.output_tokens
        return UsageStats(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=total,
            cost_usd=payload.cost,
            duration_ms=payload.duration_ms,
            estimated=False,
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def create_job(
        self,
        kind: WorkflowKind,
        document_refs: Iterable[str],
        model: str,
        name: str | None = None,
    ) -> str:
        """Submit a workflow job and return its id without waiting for it."""

        if not self._api_key:
            raise SubmissionError("Workflow service is not configured", unconfigured=True)
        refs = [ref for ref in document_refs if ref]
        if not refs:
            raise SubmissionError("At least one document reference is required")

        try:
            document_ids = [self._stage_document(ref) for ref in refs]
            payload = self._request(
                "POST",
                "/api/v1/workflows",
                json=self._build_body(kind, document_ids, model, name),
            )
        except SubmissionError:
            raise
        except TransportError as exc:
            reason = "unreachable" if exc.transient else "rejected the request"
            raise SubmissionError(f"Workflow service {reason}: {exc.message}") from exc
        except OrchestrationError as exc:
            raise SubmissionError(f"Workflow submission failed: {exc.message}") from exc

        job_id = None
        if isinstance(payload, dict):
            job_id = payload.get("id") or payload.get("workflowId")
        if not job_id:
            raise SubmissionError("Workflow service accepted the request but returned no job id")

        LOGGER.info("Created %s workflow %s for model %s", kind.value, job_id, model)
        return str(job_id)

    def get_status(self, job_id: str) -> WorkflowStatus:
        self._require_key()
        payload = self._request("GET", f"/api/v1/workflows/{job_id}", job_id=job_id)
        try:
            status = WorkflowStatusPayload.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"Unexpected status payload for {job_id}: {exc}", job_id=job_id, status_code=200) from exc

        return WorkflowStatus(
            job_id=job_id,
            state=translate_status(status.status),
            raw_status=status.status,
            error=status.error,
            usage=self._usage_from(status),
            model=status.model,
        )

    def get_manifest(self, job_id: str) -> list[ManifestDocument]:
        self._require_key()
        payload = self._request(
            "GET",
            f"/api/v1/workflows/{job_id}",
            job_id=job_id,
            params={"with_documents": "true"},
        )
        raw_documents = payload.get("documents") if isinstance(payload, dict) else None
        documents: list[ManifestDocument] = []
        for item in raw_documents or []:
            try:
                documents.append(ManifestDocument.model_validate(item))
            except ValidationError:
                LOGGER.warning("Skipping malformed manifest entry for %s: %r", job_id, item)
        return documents

    def get_document_metadata(self, document_id: str, *, job_id: str | None = None) -> DocumentMetadata:
        self._require_key()
        payload = self._request(
            "GET",
            f"/api/v1/documents/{document_id}",
            job_id=job_id,
            params={"with_download_url": "true"},
        )
        try:
            return DocumentMetadata.model_validate(payload)
        except ValidationError as exc:
            raise NoDownloadUrlError(f"Unexpected metadata for document {document_id}", job_id=job_id) from exc

    def fetch_presigned(self, url: str, *, job_id: str | None = None) -> bytes:
        """GET a presigned URL without service credentials."""

        started = time.monotonic()
        try:
            response = self._client.get(url)
        except httpx.HTTPError as exc:
            raise BlobFetchError(f"Presigned download failed: {exc}", job_id=job_id) from exc
        elapsed = (time.monotonic() - started) * 1000
        if response.status_code < 200 or response.status_code >= 300:
            raise BlobFetchError(
                f"Presigned download returned {response.status_code}",
                job_id=job_id,
                status_code=response.status_code,
            )
        LOGGER.info("Fetched %d bytes from presigned URL (%.0fms)", len(response.content), elapsed)
        return response.content

    def download_result(
        self,
        job_id: str,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> DownloadedArtifact:
        """Manifest, artifact selection, metadata, then presigned blob.

        Safe to call repeatedly; nothing on the remote job changes. ``should_stop``
        is checked before each step after the manifest and raises
        :class:`DownloadCancelledError` when it returns True.
        """

        def _check(step: str) -> None:
            if should_stop is not None and should_stop():
                LOGGER.info("Download for %s cancelled before %s", job_id, step)
                raise DownloadCancelledError(f"Download cancelled before {step}", job_id=job_id)

        documents = self.get_manifest(job_id)
        try:
            artifact = select_artifact(documents)
        except NoArtifactError as exc:
            exc.job_id = job_id
            raise

        _check("metadata")
        metadata = self.get_document_metadata(artifact.id, job_id=job_id)
        if not metadata.download_url:
            raise NoDownloadUrlError(f"Document {artifact.id} has no download URL", job_id=job_id)

        _check("blob fetch")
        data = self.fetch_presigned(metadata.download_url, job_id=job_id)
        return DownloadedArtifact(
            data=data,
            document_id=artifact.id,
            filename=artifact.filename or metadata.filename,
            mime_type=artifact.mime_type or metadata.mime_type,
            artifact_type=artifact.type,
        )

    def close(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            self._client.close()


__all__ = [
    "DocumentMetadata",
    "DownloadedArtifact",
    "ManifestDocument",
    "WorkflowClient",
    "WorkflowStatus",
    "WorkflowStatusPayload",
    "select_artifact",
]
