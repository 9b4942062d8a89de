"""Turn parsed frames into the ordered ``StreamEvent`` sequence.

Ordering: content/reasoning events in arrival order, then at most one
usage event, then exactly one of done/error.  Nothing is emitted after a
terminal event.
"""

from __future__ import annotations

import logging

from streamwire.diagnostics import DiagnosticsSink, safe_append
from streamwire.errors import NoContentError, ProtocolError, StreamwireError
from streamwire.types import RawFrame, StreamEvent, UsageSummary

from .parser import (
    ThinkTagSplitter,
    decode_frame,
    extract_content,
    extract_error,
    extract_reasoning,
    extract_usage,
    parse_document,
)

_logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "No assistant messages found in API response"


class StreamNormalizer:
    """Per-request event normalizer.  Not reusable across requests."""

    def __init__(
        self,
        diagnostics: DiagnosticsSink | None = None,
        split_think_tags: bool = False,
    ) -> None:
        self._diagnostics = diagnostics
        self._splitter = ThinkTagSplitter() if split_think_tags else None
        self._usage: UsageSummary | None = None
        self.content_count = 0
        self.fallback_attempts = 0
        self.terminated = False

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def process(self, frame: RawFrame) -> list[StreamEvent]:
        """Events for one frame (possibly none)."""
        if self.terminated:
            return []
        doc = decode_frame(frame, self._diagnostics)
        if doc is None:
            return []

        error = extract_error(doc)
        if error is not None:
            return [self._terminate(ProtocolError(error))]

        events = self._document_events(doc)
        if not events and doc.get("choices"):
            safe_append(self._diagnostics, f"No content in frame: {frame.payload[:200]}")
        return events

    def _document_events(self, doc: dict) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        reasoning = extract_reasoning(doc)
        if reasoning:
            events.append(StreamEvent.reasoning(reasoning))

        content = extract_content(doc)
        if content:
            if self._splitter is not None:
                events.extend(self._split(self._splitter.feed(content)))
            else:
                events.append(StreamEvent.content(content))
                self.content_count += 1

        usage = extract_usage(doc)
        if usage is not None:
            self._usage = usage
        return events

    def _split(self, pieces) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for kind, text in pieces:
            if kind == "reasoning":
                events.append(StreamEvent.reasoning(text))
            else:
                events.append(StreamEvent.content(text))
                self.content_count += 1
        return events

    # ------------------------------------------------------------------
    # Terminal conditions
    # ------------------------------------------------------------------

    def finish(self, raw_text: str) -> list[StreamEvent]:
        """Close the stream: fallback if needed, then usage and done/error."""
        if self.terminated:
            return []

        events: list[StreamEvent] = []
        if self._splitter is not None:
            events.extend(self._split(self._splitter.final()))

        if self.content_count == 0:
            fallback = self._whole_document_fallback(raw_text)
            if fallback and fallback[-1].is_terminal:
                return fallback
            events.extend(fallback)

        if self.content_count == 0:
            _logger.warning("%s", NO_CONTENT_MESSAGE)
            safe_append(self._diagnostics, NO_CONTENT_MESSAGE)
            events.append(self._terminate(NoContentError(NO_CONTENT_MESSAGE)))
            return events

        if self._usage is not None:
            events.append(StreamEvent.usage_event(self._usage))
        events.append(self._terminate(None))
        return events

    def _whole_document_fallback(self, raw_text: str) -> list[StreamEvent]:
        """Re-run extraction once against the entire body as one JSON document."""
        self.fallback_attempts += 1
        doc = parse_document(raw_text.strip())
        if doc is None:
            safe_append(self._diagnostics, "Whole-document fallback: body is not a JSON object")
            return []

        error = extract_error(doc)
        if error is not None:
            # The provider disavowed this response: no partial content.
            return [self._terminate(ProtocolError(error))]

        safe_append(self._diagnostics, "Parsed non-streaming response")
        events = self._document_events(doc)
        if self._splitter is not None:
            events.extend(self._split(self._splitter.final()))
        return events

    def protocol_failure(self, status_code: int, body: str) -> StreamEvent:
        """Terminal event for a non-2xx response."""
        doc = parse_document(body.strip())
        message = extract_error(doc) if doc is not None else None
        if not message:
            message = body.strip()[:500] or f"HTTP {status_code}"
        return self._terminate(ProtocolError(message, status_code=status_code))

    def failure(self, error: StreamwireError) -> StreamEvent:
        """Terminal event for a transport (or other) failure."""
        return self._terminate(error)

    def _terminate(self, error: StreamwireError | None) -> StreamEvent:
        self.terminated = True
        if error is None:
            return StreamEvent.done()
        _logger.debug("Stream terminated with %s: %s", error.kind.value, error)
        return StreamEvent.failure(error)
