"""Error taxonomy for streamwire.

Error classes:
  format     - bad or empty input conversation (raised before any I/O)
  transport  - connection refused, DNS, TLS or timeout
  protocol   - non-2xx status or an explicit ``error`` object from the endpoint
  no_content - well-formed response with nothing extractable after fallback
  decode     - a single malformed frame (always recovered locally)
  config     - unusable provider configuration
"""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    FORMAT = "format"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    NO_CONTENT = "no_content"
    DECODE = "decode"
    CONFIG = "config"


class StreamwireError(Exception):
    """Base class for all streamwire failures."""

    kind: ErrorKind = ErrorKind.PROTOCOL


class ConfigError(StreamwireError):
    kind = ErrorKind.CONFIG


class FormatError(StreamwireError):
    kind = ErrorKind.FORMAT


class TransportError(StreamwireError):
    kind = ErrorKind.TRANSPORT


class ProtocolError(StreamwireError):
    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoContentError(StreamwireError):
    kind = ErrorKind.NO_CONTENT


class DecodeError(StreamwireError):
    kind = ErrorKind.DECODE


def with_prefix(error: StreamwireError, prefix: str) -> StreamwireError:
    """Return a copy of *error* whose message starts with *prefix*."""
    message = f"{prefix}: {error}"
    if isinstance(error, ProtocolError):
        return ProtocolError(message, status_code=error.status_code)
    return type(error)(message)
