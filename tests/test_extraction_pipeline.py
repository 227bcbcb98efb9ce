from __future__ import annotations

import base64
import json
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from summarybench.core.errors import ExtractionError, TransportError
from summarybench.core.retry import RetryPolicy
from summarybench.domain import ExtractionMethod, UsageStats
from summarybench.extraction.pipeline import ContentThresholds, TieredExtractor
from summarybench.extraction.vision import VisionExtractionFallback
from summarybench.infrastructure.chat import ChatCompletion, HttpChatCompletionClient
from summarybench.infrastructure.workflow import DownloadedArtifact


class RecordingChatClient:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[dict] = []

    def complete(self, model, messages, *, max_tokens=None, temperature=None, timeout=None):
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "timeout": timeout,
            }
        )
        if self.error is not None:
            raise self.error
        return ChatCompletion(text=self.text, usage=UsageStats(input_tokens=10, output_tokens=5, total_tokens=15))


def _artifact(data: bytes, mime: str = "application/pdf") -> DownloadedArtifact:
    return DownloadedArtifact(
        data=data,
        document_id="report",
        filename="report.pdf",
        mime_type=mime,
        artifact_type="WORKFLOW_REPORT",
    )


def test_thresholds_scale_with_document_size():
    thresholds = ContentThresholds()

    assert thresholds.for_size(10 * 1024) == 100
    assert thresholds.for_size(500 * 1024) == 500
    assert thresholds.for_size(5 * 1024 * 1024) == 2000


def test_structural_success_skips_vision(make_text_pdf):
    chat = RecordingChatClient(text="should not be used")
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat))

    result = extractor.extract(_artifact(make_text_pdf(["y" * 150])))

    assert result.method == ExtractionMethod.STRUCTURAL
    assert result.char_count == 150
    assert chat.calls == []


def test_insufficient_structural_calls_vision_once(make_pdf):
    transcript = "Page 1\n1 Q. State your name.\n2 A. Jane Roe.\n" * 10
    chat = RecordingChatClient(text=transcript)
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat, timeout=600))

    result = extractor.extract(_artifact(make_pdf("", compressed=True)))

    assert result.method == ExtractionMethod.VISION
    assert result.content == transcript.strip()
    assert not result.short_content
    assert len(chat.calls) == 1
    call = chat.calls[0]
    assert call["model"] == "google/gemini-2.5-flash"
    assert call["max_tokens"] == 65000
    assert call["temperature"] == 0.1
    assert call["timeout"] == 600


def test_vision_payload_is_inline_data_url(make_pdf):
    pdf = make_pdf("", compressed=True)
    chat = RecordingChatClient(text="x" * 200)

    TieredExtractor(vision=VisionExtractionFallback(chat)).extract(_artifact(pdf))

    content = chat.calls[0]["messages"][0]["content"]
    image_part = next(part for part in content if part["type"] == "image_url")
    text_part = next(part for part in content if part["type"] == "text")
    assert image_part["image_url"]["url"] == "data:application/pdf;base64," + base64.b64encode(pdf).decode("ascii")
    assert "page and line" in text_part["text"]


def test_source_document_prompt_keeps_speaker_labels():
    chat = RecordingChatClient(text="THE WITNESS: yes")
    VisionExtractionFallback(chat).transcribe(b"%PDF", source_document=True)

    prompt = chat.calls[0]["messages"][0]["content"][1]["text"]
    assert "THE WITNESS:" in prompt
    assert "line numbers" in prompt


def test_short_vision_result_is_flagged_not_retried(make_pdf):
    chat = RecordingChatClient(text="Brief stipulation.")
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat))

    result = extractor.extract(_artifact(make_pdf("", compressed=True)))

    assert result.method == ExtractionMethod.VISION
    assert result.short_content is True
    assert len(chat.calls) == 1


def test_vision_failure_raises_with_partial_text(make_pdf):
    chat = RecordingChatClient(error=TransportError("gateway timeout", status_code=504))
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat))

    with pytest.raises(ExtractionError) as excinfo:
        extractor.extract(_artifact(make_pdf("BT (CAPTION) Tj ET")), job_id="wf-3")

    assert excinfo.value.partial_text == "CAPTION"
    assert excinfo.value.job_id == "wf-3"
    assert len(chat.calls) == 1


def test_empty_vision_result_is_an_error(make_pdf):
    chat = RecordingChatClient(text="   ")
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat))

    with pytest.raises(ExtractionError):
        extractor.extract(_artifact(make_pdf("", compressed=True)))


def test_without_vision_fallback_extraction_fails(make_pdf):
    with pytest.raises(ExtractionError) as excinfo:
        TieredExtractor().extract(_artifact(make_pdf("BT (short) Tj ET")))
    assert excinfo.value.partial_text == "short"


def test_json_result_artifact_needs_no_extraction():
    payload = {"summary": {"sections": [{"title": "Overview", "content": "Witness testified about the lease."}]}}
    chat = RecordingChatClient(text="unused")
    extractor = TieredExtractor(vision=VisionExtractionFallback(chat), thresholds=ContentThresholds(small_min_chars=10))

    result = extractor.extract(_artifact(json.dumps(payload).encode("utf-8"), mime="application/json"))

    assert result.method == ExtractionMethod.ARTIFACT_TEXT
    assert "Witness testified about the lease." in result.content
    assert chat.calls == []


def test_non_pdf_bytes_use_raw_fallback():
    text = "Plain text summary. " * 20
    result = TieredExtractor().extract(_artifact(text.encode("utf-8"), mime="application/octet-stream"))

    assert result.method == ExtractionMethod.RAW_FALLBACK
    assert result.content == text.strip()


def test_http_chat_client_parses_completion():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(
            200,
            json={
                "model": "google/gemini-2.5-flash",
                "choices": [{"message": {"role": "assistant", "content": "Transcribed text"}}],
                "usage": {"prompt_tokens": 900, "completion_tokens": 100, "total_tokens": 1000},
            },
        )

    client = HttpChatCompletionClient(
        "case-key",
        api_base="https://llm.example",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    completion = client.complete("google/gemini-2.5-flash", [{"role": "user", "content": "hi"}], max_tokens=10)

    assert completion.text == "Transcribed text"
    assert completion.usage is not None and completion.usage.total_tokens == 1000
    assert captured["auth"] == "Bearer case-key"
    assert captured["path"] == "/llm/v1/chat/completions"
    assert captured["body"]["max_tokens"] == 10


def test_http_chat_client_retries_server_errors():
    responses = [httpx.Response(502, text="bad gateway"), httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = HttpChatCompletionClient(
        "key",
        retry_policy=RetryPolicy(attempts=3, base_delay=1.0),
        sleep=sleeps.append,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    assert client.complete("m", [{"role": "user", "content": "x"}]).text == "ok"
    assert sleeps == [1.0]
