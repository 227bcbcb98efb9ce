"""Tiered extraction: artifact text, structural parse, then vision fallback."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from summarybench.core.errors import ExtractionError
from summarybench.domain.jobs import ExtractionMethod, ExtractionResult
from summarybench.extraction.structural import BinaryTextExtractor, is_pdf
from summarybench.extraction.vision import VisionExtractionFallback
from summarybench.infrastructure.workflow import DownloadedArtifact


LOGGER = logging.getLogger(__name__)

_TEXT_KEYS = ("content", "text", "summary", "markdown", "body", "output", "result")


@dataclass(slots=True, frozen=True)
class ContentThresholds:
    """Minimum extracted characters, scaled by the size of the source artifact."""

    small_max_bytes: int = 200 * 1024
    medium_max_bytes: int = 2 * 1024 * 1024
    small_min_chars: int = 100
    medium_min_chars: int = 500
    large_min_chars: int = 2000

    def for_size(self, size_bytes: int) -> int:
        if size_bytes < self.small_max_bytes:
            return self.small_min_chars
        if size_bytes < self.medium_max_bytes:
            return self.medium_min_chars
        return self.large_min_chars


def _collect_json_text(node: Any) -> list[str]:
    pieces: list[str] = []

    def walk(value: Any, keyed: bool) -> None:
        if isinstance(value, str):
            if keyed and value.strip():
                pieces.append(value.strip())
        elif isinstance(value, dict):
            for key, item in value.items():
                walk(item, keyed or str(key).lower() in _TEXT_KEYS)
        elif isinstance(value, list):
            for item in value:
                walk(item, keyed)

    walk(node, isinstance(node, str))
    return pieces


def artifact_text(data: bytes, mime_type: str | None) -> str:
    """Text of a machine-readable result artifact."""

    raw = data.decode("utf-8", errors="replace")
    if "json" not in (mime_type or "").lower():
        return raw.strip()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Result artifact declared JSON but did not parse, using raw text")
        return raw.strip()
    pieces = _collect_json_text(parsed)
    return "\n\n".join(pieces) if pieces else raw.strip()


@dataclass(slots=True)
class TieredExtractor:
    structural: BinaryTextExtractor = field(default_factory=BinaryTextExtractor)
    vision: VisionExtractionFallback | None = None
    thresholds: ContentThresholds = field(default_factory=ContentThresholds)

    def extract(self, artifact: DownloadedArtifact, *, job_id: str | None = None) -> ExtractionResult:
        data = artifact.data
        size_bytes = len(data)
        threshold = self.thresholds.for_size(size_bytes)
        mime = (artifact.mime_type or "").lower()

        if mime.startswith("application/json") or mime.startswith("text/"):
            text = artifact_text(data, mime)
            return self._accept(text, ExtractionMethod.ARTIFACT_TEXT, size_bytes, threshold, job_id=job_id)

        if not is_pdf(data):
            LOGGER.warning("Artifact %s is not a PDF (%s), decoding raw bytes", artifact.document_id, mime or "unknown")
            text = data.decode("utf-8", errors="replace").strip()
            return self._accept(text, ExtractionMethod.RAW_FALLBACK, size_bytes, threshold, job_id=job_id)

        structural = self.structural.extract(data, min_chars=threshold)
        if structural.sufficient:
            LOGGER.info("Structural extraction of %s: %d chars", artifact.document_id, structural.char_count)
            return ExtractionResult(
                content=structural.text,
                method=ExtractionMethod.STRUCTURAL,
                size_bytes=size_bytes,
                char_count=structural.char_count,
            )

        LOGGER.info(
            "Structural extraction of %s insufficient (%d <= %d chars), falling back to vision",
            artifact.document_id,
            structural.char_count,
            threshold,
        )
        if self.vision is None:
            raise ExtractionError(
                f"Structural extraction yielded {structural.char_count} chars and no vision fallback is configured",
                job_id=job_id,
                partial_text=structural.text,
            )

        try:
            vision = self.vision.transcribe(data, filename=artifact.filename, job_id=job_id)
        except ExtractionError as exc:
            exc.partial_text = structural.text
            raise
        return self._accept(vision.text, ExtractionMethod.VISION, size_bytes, threshold, job_id=job_id)

    @staticmethod
    def _accept(
        text: str,
        method: ExtractionMethod,
        size_bytes: int,
        threshold: int,
        *,
        job_id: str | None,
    ) -> ExtractionResult:
        if not text:
            raise ExtractionError(f"{method.value} extraction produced no text", job_id=job_id)
        short = len(text) <= threshold
        if short:
            LOGGER.warning(
                "%s extraction produced only %d chars (threshold %d); flagged for review",
                method.value,
                len(text),
                threshold,
            )
        return ExtractionResult(
            content=text,
            method=method,
            size_bytes=size_bytes,
            char_count=len(text),
            short_content=short,
        )
