"""Client for the document vault (storage and OCR ingestion) service."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field

from summarybench.core.errors import (
    BlobFetchError,
    ConfigurationError,
    NonJsonResponseError,
    NotFoundError,
    TransportError,
    is_transient_conflict,
)
from summarybench.core.retry import DEFAULT_POLICY, RetryPolicy, call_with_retry, is_transient_transport_error


LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.case.dev"


def is_retryable_ingest_error(exc: BaseException) -> bool:
    """Ingestion additionally retries the vault's named write conflicts."""

    if is_transient_transport_error(exc):
        return True
    return isinstance(exc, TransportError) and is_transient_conflict(exc.body or exc.message)


INGEST_POLICY = RetryPolicy(attempts=3, base_delay=1.0, max_delay=10.0, retryable=is_retryable_ingest_error)


class _VaultPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Vault(_VaultPayload):
    id: str
    name: str | None = None
    description: str | None = None


class VaultObject(_VaultPayload):
    id: str
    filename: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    size: int | None = None
    ingestion_status: str | None = Field(default=None, alias="ingestionStatus")
    ingestion_error: str | None = Field(default=None, alias="ingestionError")
    text_length: int | None = Field(default=None, alias="textLength")
    page_count: int | None = Field(default=None, alias="pageCount")


@dataclass(slots=True)
class UploadedObject:
    vault_id: str
    object_id: str
    filename: str
    size_bytes: int
    content_type: str


class VaultClient:
    """Bearer-authenticated client for vault containers and their objects."""

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 60.0,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Vault API key is not configured")
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ConfigurationError("api_base must include scheme and host")

        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._api_base}{path}"
        started = time.monotonic()
        try:
            response = self._client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        LOGGER.info("%s %s -> %s (%.0fms)", method, path, response.status_code, (time.monotonic() - started) * 1000)

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} returned 404")

        try:
            payload = response.json()
        except ValueError as exc:
            preview = response.text[:200]
            LOGGER.error("Non-JSON response from %s %s (status %s): %s", method, path, response.status_code, preview)
            raise NonJsonResponseError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
                content_type=response.headers.get("content-type", ""),
                preview=preview,
            ) from exc

        if response.status_code >= 400:
            message = ""
            if isinstance(payload, dict):
                message = str(payload.get("message") or payload.get("error") or "")
            raise TransportError(
                f"{method} {path} returned {response.status_code}: {message or payload}",
                status_code=response.status_code,
                body=message or str(payload),
            )
        return payload if isinstance(payload, dict) else {"items": payload}

    def _request(self, method: str, path: str, *, policy: RetryPolicy | None = None, **kwargs: Any) -> dict[str, Any]:
        return call_with_retry(
            lambda: self._send(method, path, **kwargs),
            policy=policy or self._retry_policy,
            sleep=self._sleep,
            describe=f"{method} {path}",
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def create_vault(self, name: str, description: str | None = None) -> Vault:
        payload = self._request(
            "POST",
            "/vault",
            json={"name": name, "description": description, "enableGraph": False},
        )
        return Vault.model_validate(payload)

    def upload(
        self,
        vault_id: str,
        filename: str,
        data: bytes,
        content_type: str = "application/pdf",
    ) -> UploadedObject:
        """Reserve an object and PUT the bytes straight to its presigned URL."""

        reservation = self._request(
            "POST",
            f"/vault/{vault_id}/upload",
            json={"filename": filename, "contentType": content_type, "metadata": {"source": "summarybench"}},
        )
        object_id = reservation.get("objectId")
        upload_url = reservation.get("uploadUrl")
        if not object_id or not upload_url:
            raise TransportError(f"Upload reservation for {filename} is missing objectId or uploadUrl", status_code=200)

        try:
            response = self._client.put(upload_url, content=data, headers={"Content-Type": content_type})
        except httpx.HTTPError as exc:
            raise BlobFetchError(f"Direct upload of {filename} failed: {exc}") from exc
        if response.status_code >= 300:
            raise BlobFetchError(
                f"Direct upload of {filename} returned {response.status_code}",
                status_code=response.status_code,
            )

        LOGGER.info("Uploaded %s to vault %s as %s (%d bytes)", filename, vault_id, object_id, len(data))
        return UploadedObject(
            vault_id=vault_id,
            object_id=str(object_id),
            filename=filename,
            size_bytes=len(data),
            content_type=content_type,
        )

    def trigger_ingest(self, vault_id: str, object_id: str) -> dict[str, Any]:
        return self._request("POST", f"/vault/{vault_id}/ingest/{object_id}", policy=INGEST_POLICY)

    def get_object(self, vault_id: str, object_id: str) -> VaultObject:
        payload = self._request("GET", f"/vault/{vault_id}/objects/{object_id}")
        return VaultObject.model_validate(payload)

    def get_text(self, vault_id: str, object_id: str) -> str:
        payload = self._request("GET", f"/vault/{vault_id}/objects/{object_id}/text")
        return str(payload.get("text") or "")

    def get_presigned_url(self, vault_id: str, object_id: str) -> str:
        payload = self._request("GET", f"/vault/{vault_id}/objects/{object_id}/presigned-url")
        url = payload.get("url") or payload.get("presignedUrl") or payload.get("downloadUrl")
        if not url:
            raise TransportError(f"Vault returned no presigned URL for {object_id}", status_code=200)
        return str(url)

    def close(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            self._client.close()


__all__ = [
    "INGEST_POLICY",
    "UploadedObject",
    "Vault",
    "VaultClient",
    "VaultObject",
    "is_retryable_ingest_error",
]
