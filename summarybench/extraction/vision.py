"""Vision-model transcription for documents the structural pass cannot read."""
from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any

from summarybench.core.errors import ExtractionError, OrchestrationError
from summarybench.domain.jobs import UsageStats
from summarybench.infrastructure.chat import ChatCompletionClient


LOGGER = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "google/gemini-2.5-flash"
DEFAULT_TIMEOUT_SECONDS = 10 * 60
MAX_TOKENS = 65_000
TEMPERATURE = 0.1

SOURCE_DOCUMENT_PROMPT = """Extract ALL text from this legal document exactly as it appears.

CRITICAL REQUIREMENTS:
1. PRESERVE all page numbers and line numbers exactly as shown
2. PRESERVE question and answer markers (Q: and A:)
3. PRESERVE speaker labels (e.g. "THE WITNESS:", "MR. SMITH:", "THE COURT:")
4. PRESERVE paragraph breaks and document structure
5. PRESERVE exhibits, headers, footers and caption information
6. Include ALL pages from start to finish

Do not summarize, correct or interpret. Extract the complete document text now:"""

SUMMARY_PROMPT = """Extract ALL text content from this document summary exactly as written.

PRESERVE:
- All page and line references and citations (e.g. "Page 42, Lines 3-7" or "42:3-7")
- The complete summary text
- Any appended transcript at the end of the document
- Section headers and structure
- All formatting and paragraph breaks

Do not summarize or interpret. Extract the complete text from start to finish:"""


@dataclass(slots=True)
class VisionText:
    text: str
    char_count: int
    usage: UsageStats | None = None
    duration_ms: int = 0


def build_messages(data: bytes, prompt: str, mime_type: str = "application/pdf") -> list[dict[str, Any]]:
    encoded = base64.b64encode(data).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                {"type": "text", "text": prompt},
            ],
        }
    ]


class VisionExtractionFallback:
    """One multimodal completion call per document; never returns empty text."""

    def __init__(
        self,
        client: ChatCompletionClient,
        *,
        model: str = DEFAULT_VISION_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self.model = model
        self.timeout = timeout

    def transcribe(
        self,
        data: bytes,
        *,
        source_document: bool = False,
        filename: str | None = None,
        job_id: str | None = None,
    ) -> VisionText:
        prompt = SOURCE_DOCUMENT_PROMPT if source_document else SUMMARY_PROMPT
        LOGGER.info("Vision transcription of %s (%d KB) with %s", filename or "document", len(data) // 1024, self.model)

        started = time.monotonic()
        try:
            completion = self._client.complete(
                self.model,
                build_messages(data, prompt),
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                timeout=self.timeout,
            )
        except OrchestrationError as exc:
            raise ExtractionError(f"Vision transcription failed: {exc.message}", job_id=job_id) from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        text = completion.text.strip()
        if not text:
            raise ExtractionError("Vision transcription returned empty content", job_id=job_id)

        LOGGER.info("Vision transcription produced %d chars in %dms", len(text), duration_ms)
        return VisionText(text=text, char_count=len(text), usage=completion.usage, duration_ms=duration_ms)
