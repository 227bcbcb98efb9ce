"""Zero-network text pull from the text-drawing operators of a PDF.

Only uncompressed content streams are readable this way. Image-only and
Flate-compressed documents come back short, which is the signal callers use
to fall back to vision transcription.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any


LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_CHARS = 500

_OBJECT_STREAM_RE = re.compile(
    r"\bobj\b(?P<head>(?:(?!\bendobj\b).)*?)\bstream(?:\r\n|\r|\n)(?P<body>.*?)\bendstream\b",
    re.S,
)
_WHITESPACE = frozenset(" \t\r\n\x0c\x00")
_DELIMITERS = frozenset("()<>[]{}/%")
_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    "(": "(",
    ")": ")",
    "\\": "\\",
}
_OCTAL = frozenset("01234567")
# TJ kerning at or beyond this (thousandths of an em) reads as a word gap
_TJ_SPACE_THRESHOLD = -250
_MAX_OPERANDS = 64


@dataclass(slots=True)
class StructuralText:
    text: str
    char_count: int
    sufficient: bool
    low_confidence: bool


def is_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(b"%PDF")


class _ArrayStart:
    __slots__ = ()


_ARRAY_START = _ArrayStart()


def _read_literal(source: str, start: int) -> tuple[str, int]:
    """Read a ``(...)`` string starting at ``start``; returns text and next index."""

    depth = 1
    index = start + 1
    length = len(source)
    out: list[str] = []
    while index < length:
        char = source[index]
        if char == "\\":
            index += 1
            if index >= length:
                break
            escaped = source[index]
            if escaped in _ESCAPES:
                out.append(_ESCAPES[escaped])
                index += 1
            elif escaped == "\r":
                index += 2 if source[index + 1 : index + 2] == "\n" else 1
            elif escaped == "\n":
                index += 1
            elif escaped in _OCTAL:
                end = index
                while end < length and end < index + 3 and source[end] in _OCTAL:
                    end += 1
                out.append(chr(int(source[index:end], 8) & 0xFF))
                index = end
            else:
                out.append(escaped)
                index += 1
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return "".join(out), index + 1
        out.append(char)
        index += 1
    return "".join(out), length


def _read_hex(source: str, start: int) -> tuple[str | None, int]:
    end = source.find(">", start + 1)
    if end == -1:
        return None, len(source)
    digits = "".join(ch for ch in source[start + 1 : end] if not ch.isspace())
    if len(digits) % 2:
        digits += "0"
    try:
        decoded = bytes.fromhex(digits).decode("latin-1")
    except ValueError:
        return None, end + 1
    # glyph-indexed CID strings decode to control characters
    if decoded and all(ch.isprintable() or ch in "\t\n\r" for ch in decoded):
        return decoded, end + 1
    return None, end + 1


def _read_token(source: str, start: int) -> tuple[str, int]:
    index = start
    length = len(source)
    while index < length and source[index] not in _WHITESPACE and source[index] not in _DELIMITERS:
        index += 1
    return source[start:index], index


def _as_number(token: str) -> float | None:
    try:
        return float(token)
    except ValueError:
        return None


class _TextCollector:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self._current: list[str] = []

    def emit(self, text: str) -> None:
        if text:
            self._current.append(text)

    def newline(self) -> None:
        if self._current:
            self.lines.append("".join(self._current))
            self._current = []

    def finish(self) -> str:
        self.newline()
        normalised: list[str] = []
        for block in self.lines:
            for line in block.splitlines():
                cleaned = " ".join(line.split())
                if cleaned:
                    normalised.append(cleaned)
        return "\n".join(normalised)


def _last_string(operands: list[Any]) -> str | None:
    for operand in reversed(operands):
        if isinstance(operand, str):
            return operand
    return None


def _apply_operator(operator: str, operands: list[Any], collector: _TextCollector) -> None:
    if operator == "Tj":
        text = _last_string(operands)
        if text is not None:
            collector.emit(text)
    elif operator == "TJ":
        array = operands[-1] if operands and isinstance(operands[-1], list) else []
        for item in array:
            if isinstance(item, str):
                collector.emit(item)
            elif isinstance(item, float) and item <= _TJ_SPACE_THRESHOLD:
                collector.emit(" ")
    elif operator in ("'", '"'):
        collector.newline()
        text = _last_string(operands)
        if text is not None:
            collector.emit(text)
    elif operator in ("T*", "ET"):
        collector.newline()
    elif operator in ("Td", "TD"):
        numbers = [operand for operand in operands if isinstance(operand, float)]
        if len(numbers) >= 2 and numbers[-1] != 0:
            collector.newline()
        else:
            collector.emit(" ")


def _scan_content(source: str, collector: _TextCollector) -> None:
    operands: list[Any] = []
    index = 0
    length = len(source)
    while index < length:
        char = source[index]
        if char in _WHITESPACE:
            index += 1
        elif char == "%":
            newline = source.find("\n", index)
            index = length if newline == -1 else newline + 1
        elif char == "(":
            text, index = _read_literal(source, index)
            operands.append(text)
        elif char == "<":
            if source.startswith("<<", index):
                index += 2
                continue
            text, index = _read_hex(source, index)
            if text is not None:
                operands.append(text)
        elif char == ">":
            index += 1
        elif char == "[":
            operands.append(_ARRAY_START)
            index += 1
        elif char == "]":
            items: list[Any] = []
            while operands:
                item = operands.pop()
                if item is _ARRAY_START:
                    break
                items.append(item)
            items.reverse()
            operands.append(items)
            index += 1
        elif char == "/":
            _, index = _read_token(source, index + 1)
            operands.append(None)
        elif char in "{}":
            index += 1
        else:
            token, index = _read_token(source, index)
            if not token:
                index += 1
                continue
            number = _as_number(token)
            if number is not None:
                operands.append(number)
            else:
                _apply_operator(token, operands, collector)
                operands.clear()
        if len(operands) > _MAX_OPERANDS and _ARRAY_START not in operands:
            del operands[: len(operands) - _MAX_OPERANDS]


def _content_sections(document: str) -> list[str]:
    sections: list[str] = []
    compressed = 0
    for match in _OBJECT_STREAM_RE.finditer(document):
        if "/Filter" in match.group("head"):
            compressed += 1
            continue
        sections.append(match.group("body"))
    if not sections and not compressed:
        return [document]
    if compressed:
        LOGGER.debug("Skipped %d compressed streams", compressed)
    return sections


class BinaryTextExtractor:
    """Structural text extraction with a minimum-content threshold."""

    def __init__(self, min_chars: int = DEFAULT_MIN_CHARS) -> None:
        self.min_chars = min_chars

    def extract(self, data: bytes, *, min_chars: int | None = None) -> StructuralText:
        threshold = self.min_chars if min_chars is None else min_chars
        document = data.decode("latin-1")
        collector = _TextCollector()
        for section in _content_sections(document):
            _scan_content(section, collector)
            collector.newline()

        text = collector.finish()
        char_count = len(text)
        sufficient = char_count > threshold
        LOGGER.debug("Structural pass recovered %d chars (threshold %d)", char_count, threshold)
        return StructuralText(
            text=text,
            char_count=char_count,
            sufficient=sufficient,
            low_confidence=not sufficient,
        )


def extract_structural_text(data: bytes, *, min_chars: int = DEFAULT_MIN_CHARS) -> StructuralText:
    return BinaryTextExtractor(min_chars).extract(data)
