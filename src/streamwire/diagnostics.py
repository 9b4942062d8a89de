"""Diagnostics sinks: fire-and-forget request tracing.

The request path only ever calls :func:`safe_append`, so a broken sink can
never fail or block a request.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Mapping, Protocol

_logger = logging.getLogger(__name__)

_SECRET_HEADERS = ("authorization", "api-key", "x-api-key")


class DiagnosticsSink(Protocol):
    """Anything with an ``append_line(text)`` method."""

    def append_line(self, text: str) -> None:
        ...


class NullSink:
    """Discards everything."""

    def append_line(self, text: str) -> None:
        pass


class LoggingSink:
    """Forward lines to the ``streamwire.diagnostics`` logger at DEBUG."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def append_line(self, text: str) -> None:
        self._logger.debug("%s", text)


class JsonlSink:
    """Append each line to a timestamped JSONL file.

    File: ~/.streamwire/diagnostics/diag_YYYYMMDD_HHMMSS.jsonl
    Each line: {"_seq": 0, "_elapsed_ms": 12.3, "_ts": "...", "line": "..."}
    """

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            diag_dir = Path.home() / ".streamwire" / "diagnostics"
            diag_dir.mkdir(parents=True, exist_ok=True)
            ts = time.strftime("%Y%m%d_%H%M%S")
            path = diag_dir / f"diag_{ts}.jsonl"
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

        self.path = path
        self._file = open(path, "a", encoding="utf-8")
        self._seq = 0
        self._start = time.monotonic()

    def append_line(self, text: str) -> None:
        record: dict[str, Any] = {
            "_seq": self._seq,
            "_elapsed_ms": round((time.monotonic() - self._start) * 1000, 1),
            "_ts": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "line": text,
        }
        self._seq += 1
        self._file.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._file.flush()

    def close(self) -> None:
        """Flush and close the log file."""
        if not self._file.closed:
            self._file.flush()
            self._file.close()


def safe_append(sink: DiagnosticsSink | None, text: str) -> None:
    """Send *text* to *sink*, never raising."""
    if sink is None:
        return
    try:
        sink.append_line(text)
    except Exception as e:
        _logger.warning("Diagnostics sink failed: %s", e)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of *headers* with credential values masked."""
    redacted: dict[str, str] = {}
    for name, value in headers.items():
        if name.lower() in _SECRET_HEADERS and value:
            redacted[name] = value[:10] + "***" if len(value) > 16 else "***"
        else:
            redacted[name] = value
    return redacted
