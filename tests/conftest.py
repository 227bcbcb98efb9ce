from __future__ import annotations

import json
from pathlib import Path
import sys
from typing import Callable

sys.path.append(str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from summarybench.core.retry import RetryPolicy
from summarybench.infrastructure.workflow import WorkflowClient


BLOB_HOST = "blob.example"


def build_pdf(content: str, *, compressed: bool = False) -> bytes:
    """Assemble a minimal single-page PDF around one content stream."""

    if compressed:
        body = b"x\x9c\xed\xc1\x01\r\x00\x00\x00\xc2\xa0\xf7Om\x0e7\xa0\x00\x00"
        stream_dict = f"<< /Length {len(body)} /Filter /FlateDecode >>"
    else:
        body = content.encode("latin-1")
        stream_dict = f"<< /Length {len(body)} >>"

    head = (
        "%PDF-1.4\n"
        "1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        "2 0 obj\n<< /Type /Pages /Kids [3 0 R] /Count 1 >>\nendobj\n"
        "3 0 obj\n<< /Type /Page /Parent 2 0 R /Contents 4 0 R >>\nendobj\n"
        f"4 0 obj\n{stream_dict}\nstream\n"
    ).encode("latin-1")
    tail = b"\nendstream\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"
    return head + body + tail


def show_text_pdf(chunks: list[str]) -> bytes:
    operators = "".join(f"({chunk}) Tj\n" for chunk in chunks)
    return build_pdf(f"BT\n/F1 12 Tf\n{operators}ET")


class FakeClock:
    """Monotonic clock that only advances when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWorkflowService:
    """In-process stand-in for the workflow service and its blob storage."""

    def __init__(self) -> None:
        self.statuses: list[dict] = [{"status": "IN_PROGRESS"}]
        self.documents: list[dict] = []
        self.blobs: dict[str, bytes] = {}
        self.download_urls: dict[str, str | None] = {}
        self.status_failures = 0
        self.created: list[dict] = []
        self.calls: list[tuple[str, str]] = []
        self.on_request: Callable[[httpx.Request], None] | None = None

    @property
    def blob_fetches(self) -> int:
        return sum(1 for _, url in self.calls if BLOB_HOST in url)

    @property
    def status_reads(self) -> int:
        return sum(
            1
            for method, url in self.calls
            if method == "GET" and "/api/v1/workflows/" in url and "with_documents" not in url
        )

    def add_artifact(self, document_id: str, data: bytes, *, type_: str = "WORKFLOW_REPORT", mime: str = "application/pdf") -> None:
        self.documents.append({"id": document_id, "type": type_, "mimeType": mime, "filename": f"{document_id}.pdf"})
        self.blobs[document_id] = data

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, str(request.url)))
        if self.on_request is not None:
            self.on_request(request)
        path = request.url.path

        if request.url.host == BLOB_HOST:
            blob = self.blobs.get(path.lstrip("/"))
            if blob is None:
                return httpx.Response(403, text="AccessDenied")
            return httpx.Response(200, content=blob, headers={"content-type": "application/pdf"})

        if request.method == "POST" and path == "/api/v1/workflows":
            body = json.loads(request.content.decode("utf-8"))
            self.created.append(body)
            return httpx.Response(201, json={"data": {"id": f"wf-{len(self.created)}", "status": "QUEUED"}})

        if request.method == "POST" and path == "/api/v1/documents":
            return httpx.Response(201, json={"id": "input-1"})

        if request.method == "GET" and path.startswith("/api/v1/workflows/"):
            job_id = path.rsplit("/", 1)[-1]
            if request.url.params.get("with_documents") == "true":
                return httpx.Response(200, json={"data": {"id": job_id, "documents": self.documents}})
            if self.status_failures:
                self.status_failures -= 1
                return httpx.Response(
                    503,
                    text="<!DOCTYPE html><html><body>Service Unavailable</body></html>",
                    headers={"content-type": "text/html"},
                )
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={"data": {"id": job_id, **status}})

        if request.method == "GET" and path.startswith("/api/v1/documents/"):
            document_id = path.rsplit("/", 1)[-1]
            url = self.download_urls.get(document_id, f"https://{BLOB_HOST}/{document_id}")
            payload = {"id": document_id}
            if url:
                payload["downloadUrl"] = url
            return httpx.Response(200, json={"data": payload})

        return httpx.Response(404, json={"error": "not found"})

    def client(self, *, attempts: int = 1, api_key: str | None = "test-key") -> WorkflowClient:
        return WorkflowClient(
            api_key,
            api_base="https://workflow.example",
            retry_policy=RetryPolicy(attempts=attempts),
            sleep=lambda _: None,
            http_client=httpx.Client(transport=httpx.MockTransport(self.handler)),
        )


@pytest.fixture()
def workflow_service() -> FakeWorkflowService:
    return FakeWorkflowService()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_pdf():
    return build_pdf


@pytest.fixture()
def make_text_pdf():
    return show_text_pdf
