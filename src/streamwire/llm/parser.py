"""Incremental response parsing.

``FrameParser`` splits the raw byte stream into ``data:`` frames; the
extraction rules pull content, reasoning, usage and error text out of a
decoded JSON document regardless of which provider shape it uses.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Generator

from streamwire.diagnostics import DiagnosticsSink, safe_append
from streamwire.errors import DecodeError
from streamwire.types import RawFrame, UsageSummary

_logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

class FrameParser:
    """Split an append-only byte stream into ``data:`` frames.

    Keeps one accumulation buffer of bytes not yet terminated by a newline.
    Lines are decoded only once complete, so a multi-byte character split
    across chunks is never corrupted.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._body = bytearray()
        self.done = False

    def feed(self, data: bytes) -> list[RawFrame]:
        """Append *data* and return every frame it completes."""
        if self.done or not data:
            return []
        self._body += data
        self._buffer += data

        frames: list[RawFrame] = []
        while not self.done:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            frame = self._frame_from_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[RawFrame]:
        """Emit the trailing unterminated segment, if it is a frame."""
        if self.done or not self._buffer:
            self._buffer.clear()
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        frame = self._frame_from_line(line)
        return [frame] if frame is not None else []

    def _frame_from_line(self, line: bytes) -> RawFrame | None:
        text = line.decode("utf-8", errors="replace").rstrip("\r")
        if not text.startswith(DATA_PREFIX):
            return None
        payload = text[len(DATA_PREFIX):]
        if payload.strip() == DONE_SENTINEL:
            self.done = True
            self._buffer.clear()
            return None
        return RawFrame(payload=payload)

    @property
    def raw_text(self) -> str:
        """Everything received so far, for whole-document fallback."""
        return self._body.decode("utf-8", errors="replace")

    def release(self) -> None:
        """Drop all buffered bytes."""
        self._buffer = bytearray()
        self._body = bytearray()


def decode_frame(frame: RawFrame, diagnostics: DiagnosticsSink | None = None) -> dict[str, Any] | None:
    """Decode a frame's JSON payload; malformed frames are logged and skipped."""
    try:
        doc = json.loads(frame.payload)
    except json.JSONDecodeError as e:
        err = DecodeError(f"Error parsing JSON chunk: {frame.payload[:200]!r} - {e}")
        _logger.debug("%s", err)
        safe_append(diagnostics, str(err))
        return None
    if not isinstance(doc, dict):
        safe_append(diagnostics, f"Ignoring non-object frame: {frame.payload[:200]!r}")
        return None
    return doc


def parse_document(text: str) -> dict[str, Any] | None:
    """Parse *text* as one JSON object, or ``None``."""
    try:
        doc = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return doc if isinstance(doc, dict) else None


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------

Rule = Callable[[dict[str, Any]], "str | None"]


def _first_choice(doc: dict[str, Any]) -> dict[str, Any]:
    choices = doc.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _text(value: Any) -> str | None:
    """Normalize a content value: strings as-is, part lists joined."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, list):
        texts = [
            p.get("text", "") for p in value
            if isinstance(p, dict) and isinstance(p.get("text"), str)
        ]
        return "".join(texts) or None
    return None


def _nested(doc: dict[str, Any], key: str, field: str) -> str | None:
    inner = _first_choice(doc).get(key)
    if isinstance(inner, dict):
        return _text(inner.get(field))
    return None


def delta_content(doc: dict[str, Any]) -> str | None:
    return _nested(doc, "delta", "content")


def message_content(doc: dict[str, Any]) -> str | None:
    return _nested(doc, "message", "content")


def choice_text(doc: dict[str, Any]) -> str | None:
    return _text(_first_choice(doc).get("text"))


def output_content(doc: dict[str, Any]) -> str | None:
    output = doc.get("output")
    if isinstance(output, list) and output and isinstance(output[0], dict):
        return _text(output[0].get("content"))
    return None


def delta_reasoning(doc: dict[str, Any]) -> str | None:
    return _nested(doc, "delta", "reasoning_content")


def message_reasoning(doc: dict[str, Any]) -> str | None:
    return _nested(doc, "message", "reasoning_content")


# Tried in order; first non-empty match wins.
CONTENT_RULES: tuple[Rule, ...] = (
    delta_content,
    message_content,
    choice_text,
    output_content,
)

REASONING_RULES: tuple[Rule, ...] = (
    delta_reasoning,
    message_reasoning,
)


def extract_content(doc: dict[str, Any], rules: tuple[Rule, ...] = CONTENT_RULES) -> str | None:
    for rule in rules:
        text = rule(doc)
        if text:
            return text
    return None


def extract_reasoning(doc: dict[str, Any]) -> str | None:
    return extract_content(doc, REASONING_RULES)


# (canonical field, synonyms in priority order)
_USAGE_FIELDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("input_tokens", ("prompt_tokens", "input_tokens")),
    ("output_tokens", ("completion_tokens", "output_tokens")),
    ("cache_write_tokens", ("cache_creation_input_tokens", "cache_write_tokens")),
    ("cache_read_tokens", ("cache_read_input_tokens", "prompt_cache_hit_tokens")),
)


def extract_usage(doc: dict[str, Any]) -> UsageSummary | None:
    """Normalize a ``usage`` object into a :class:`UsageSummary`."""
    raw = doc.get("usage")
    if not isinstance(raw, dict) or not raw:
        return None
    values: dict[str, int | None] = {}
    for canonical, synonyms in _USAGE_FIELDS:
        values[canonical] = None
        for name in synonyms:
            value = raw.get(name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values[canonical] = int(value)
                break
    return UsageSummary(
        input_tokens=values["input_tokens"] or 0,
        output_tokens=values["output_tokens"] or 0,
        cache_write_tokens=values["cache_write_tokens"] or None,
        cache_read_tokens=values["cache_read_tokens"] or None,
    )


def extract_error(doc: dict[str, Any]) -> str | None:
    """Return the provider's error message if *doc* carries an ``error``."""
    error = doc.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
        return json.dumps(error)
    if isinstance(error, str) and error:
        return error
    return None


# ---------------------------------------------------------------------------
# <think> tag splitting
# ---------------------------------------------------------------------------

class ThinkTagSplitter:
    """Route text inside ``<think>...</think>`` to reasoning, the rest to content.

    Incremental: a tag split across chunks is held back until it can be
    decided, so output is the same for any chunking.
    """

    OPEN = "<think>"
    CLOSE = "</think>"

    def __init__(self) -> None:
        self._pending = ""
        self._inside = False

    def feed(self, text: str) -> Generator[tuple[str, str], None, None]:
        """Yield ``(kind, text)`` pairs; kind is ``"content"`` or ``"reasoning"``."""
        self._pending += text
        while self._pending:
            tag = self.CLOSE if self._inside else self.OPEN
            kind = "reasoning" if self._inside else "content"
            idx = self._pending.find(tag)
            if idx >= 0:
                if idx:
                    yield (kind, self._pending[:idx])
                self._pending = self._pending[idx + len(tag):]
                self._inside = not self._inside
                continue
            keep = _partial_suffix(self._pending, tag)
            emit = self._pending[: len(self._pending) - keep]
            if emit:
                yield (kind, emit)
            self._pending = self._pending[len(self._pending) - keep:]
            break

    def final(self) -> Generator[tuple[str, str], None, None]:
        """Flush held-back text at end of stream."""
        if self._pending:
            yield ("reasoning" if self._inside else "content", self._pending)
        self._pending = ""


def _partial_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *tag*."""
    for n in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:n]):
            return n
    return 0
