from __future__ import annotations

import json
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from summarybench.core.errors import (
    BlobFetchError,
    DownloadCancelledError,
    NoArtifactError,
    NoDownloadUrlError,
    NonJsonResponseError,
    NotFoundError,
    SubmissionError,
)
from summarybench.core.retry import RetryPolicy
from summarybench.domain import JobState, WorkflowKind
from summarybench.infrastructure.workflow import ManifestDocument, WorkflowClient, select_artifact


def _doc(doc_id: str, type_: str, mime: str) -> ManifestDocument:
    return ManifestDocument.model_validate({"id": doc_id, "type": type_, "mimeType": mime})


def test_create_job_builds_workflow_request(workflow_service):
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return workflow_service.handler(request)

    client = WorkflowClient(
        "secret-key",
        api_base="https://workflow.example",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    job_id = client.create_job(WorkflowKind.DEPOSITION_SUMMARY, ["doc-1"], "openai/gpt-4o-mini", name="Smith depo")

    assert job_id == "wf-1"
    request = captured[0]
    assert request.headers["X-API-Key"] == "secret-key"
    body = json.loads(request.content.decode("utf-8"))
    assert body["workflowType"] == "DEPOSITION_SUMMARY"
    assert body["name"] == "Smith depo"
    assert body["model"] == "openai/gpt-4o-mini"
    assert body["inputs"] == {
        "type": "deposition_summary",
        "documentIds": ["doc-1"],
        "appendPageLine": True,
        "appendTranscript": True,
        "pageLineSummaryDensity": "PAGE_LINE_10_1",
    }


def test_create_job_omits_model_for_control(workflow_service):
    client = workflow_service.client()

    client.create_job(WorkflowKind.MEDICAL_CHRONOLOGY_V2, ["doc-1"], "casemark/default")

    body = workflow_service.created[0]
    assert "model" not in body
    assert body["inputs"]["type"] == "medical_records"


def test_create_job_stages_url_references(workflow_service):
    workflow_service.blobs["source.pdf"] = b"%PDF-1.4 source"
    client = workflow_service.client()

    client.create_job(WorkflowKind.DEPOSITION_SUMMARY, ["https://blob.example/source.pdf"], "openai/gpt-5-nano")

    methods = [(method, url) for method, url in workflow_service.calls]
    assert methods[0] == ("GET", "https://blob.example/source.pdf")
    assert methods[1][0] == "POST" and methods[1][1].endswith("/api/v1/documents")
    assert workflow_service.created[0]["inputs"]["documentIds"] == ["input-1"]


def test_create_job_requires_configuration_and_refs(workflow_service):
    with pytest.raises(SubmissionError) as excinfo:
        workflow_service.client(api_key=None).create_job(WorkflowKind.EXHIBIT_LIST, ["doc"], "m")
    assert excinfo.value.unconfigured is True

    with pytest.raises(SubmissionError):
        workflow_service.client().create_job(WorkflowKind.EXHIBIT_LIST, [], "m")
    assert workflow_service.created == []


def test_create_job_rejection_is_submission_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "invalid workflowType"})

    client = WorkflowClient("key", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(SubmissionError) as excinfo:
        client.create_job(WorkflowKind.TRIAL_SUMMARY_V2, ["doc"], "m")
    assert "rejected" in excinfo.value.message


def test_create_job_unreachable_after_retries():
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    client = WorkflowClient(
        "key",
        retry_policy=RetryPolicy(attempts=3),
        sleep=lambda _: None,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(SubmissionError) as excinfo:
        client.create_job(WorkflowKind.HEARING_SUMMARY_V2, ["doc"], "m")
    assert "unreachable" in excinfo.value.message
    assert len(attempts) == 3


def test_get_status_translates_and_reports_usage(workflow_service):
    workflow_service.statuses = [
        {
            "status": "COMPLETED",
            "usage": {"inputTokens": 1200, "outputTokens": 300, "totalTokens": 1500},
            "cost": 0.0042,
            "durationMs": 91000,
        }
    ]
    status = workflow_service.client().get_status("wf-9")

    assert status.state == JobState.COMPLETED
    assert status.raw_status == "COMPLETED"
    assert status.usage is not None
    assert status.usage.total_tokens == 1500
    assert status.usage.cost_usd == pytest.approx(0.0042)
    assert status.usage.estimated is False


def test_get_status_accepts_unwrapped_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "wf-1", "status": "FAILED", "error": "model overloaded"})

    client = WorkflowClient("key", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    status = client.get_status("wf-1")

    assert status.state == JobState.FAILED
    assert status.error == "model overloaded"
    assert status.usage is None


def test_html_error_page_is_non_json_and_retried(workflow_service):
    workflow_service.status_failures = 10
    client = workflow_service.client(attempts=3)

    with pytest.raises(NonJsonResponseError) as excinfo:
        client.get_status("wf-1")

    assert excinfo.value.is_html
    assert excinfo.value.status_code == 503
    assert workflow_service.status_reads == 3


def test_unknown_job_is_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Workflow not found"})

    client = WorkflowClient(
        "key",
        retry_policy=RetryPolicy(attempts=3),
        sleep=lambda _: None,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(NotFoundError):
        client.get_status("missing")


def test_select_artifact_prefers_machine_readable_result():
    documents = [
        _doc("input", "WORKFLOW_INPUT", "application/pdf"),
        _doc("report", "WORKFLOW_REPORT", "application/pdf"),
        _doc("result", "WORKFLOW_RESULT", "application/json"),
    ]
    assert select_artifact(documents).id == "result"


def test_select_artifact_uses_report_when_no_result():
    documents = [
        _doc("input", "WORKFLOW_INPUT", "application/pdf"),
        _doc("report", "WORKFLOW_REPORT", "application/pdf"),
    ]
    assert select_artifact(documents).id == "report"


def test_select_artifact_falls_back_to_any_output_pdf_in_manifest_order():
    documents = [
        _doc("input", "WORKFLOW_INPUT", "application/pdf"),
        _doc("first", "WORKFLOW_RESULT", "application/pdf"),
        _doc("second", "OTHER", "application/pdf"),
    ]
    assert select_artifact(documents).id == "first"


def test_select_artifact_without_match_raises():
    with pytest.raises(NoArtifactError):
        select_artifact([])
    with pytest.raises(NoArtifactError):
        select_artifact(
            [
                _doc("input", "WORKFLOW_INPUT", "application/pdf"),
                _doc("docx", "WORKFLOW_REPORT", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
            ]
        )


def test_download_result_is_idempotent(workflow_service):
    workflow_service.add_artifact("report", b"%PDF-1.4 report bytes")
    client = workflow_service.client()

    first = client.download_result("wf-1")
    second = client.download_result("wf-1")

    assert first.data == second.data == b"%PDF-1.4 report bytes"
    assert first.document_id == "report"
    assert first.artifact_type == "WORKFLOW_REPORT"
    assert workflow_service.created == []
    assert workflow_service.blob_fetches == 2


def test_download_result_walks_manifest_metadata_blob(workflow_service):
    workflow_service.add_artifact("report", b"%PDF-1.4 report bytes")
    workflow_service.client().download_result("wf-1")

    urls = [url for _, url in workflow_service.calls]
    assert "with_documents=true" in urls[0]
    assert "/api/v1/documents/report" in urls[1] and "with_download_url=true" in urls[1]
    assert urls[2] == "https://blob.example/report"


def test_download_result_without_url(workflow_service):
    workflow_service.add_artifact("report", b"%PDF")
    workflow_service.download_urls["report"] = None

    with pytest.raises(NoDownloadUrlError) as excinfo:
        workflow_service.client().download_result("wf-1")
    assert excinfo.value.job_id == "wf-1"


def test_download_result_blob_failure(workflow_service):
    workflow_service.add_artifact("report", b"%PDF")
    workflow_service.download_urls["report"] = "https://blob.example/expired"

    with pytest.raises(BlobFetchError) as excinfo:
        workflow_service.client().download_result("wf-1")
    assert excinfo.value.status_code == 403


def test_download_result_stops_between_steps(workflow_service):
    workflow_service.add_artifact("report", b"%PDF")
    checks: list[int] = []

    def stop_after_metadata() -> bool:
        checks.append(1)
        return len(checks) > 1

    with pytest.raises(DownloadCancelledError) as excinfo:
        workflow_service.client().download_result("wf-1", should_stop=stop_after_metadata)

    assert excinfo.value.job_id == "wf-1"
    assert len(workflow_service.calls) == 2
    assert workflow_service.blob_fetches == 0


def test_presigned_fetch_sends_no_api_key(workflow_service):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"bytes")

    client = WorkflowClient("secret", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert client.fetch_presigned("https://blob.example/x") == b"bytes"
    assert "X-API-Key" not in seen[0].headers
