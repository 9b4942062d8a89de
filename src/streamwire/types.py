"""Shared data types for streamwire."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from streamwire.errors import ErrorKind, StreamwireError


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(enum.Enum):
    """Speaker of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    DEVELOPER = "developer"


@dataclass(frozen=True)
class ConversationTurn:
    """One chronological turn of caller-owned history.

    ``content`` is either plain text or a tuple of OpenAI-style content
    parts (``{"type": "text", "text": ...}``, ``{"type": "image_url", ...}``).
    """

    role: Role
    content: str | tuple[dict[str, Any], ...]

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ConversationTurn:
        """Build a turn from the loose ``{"role", "content"}`` dict shape.

        A missing role means ``user``.
        """
        role = Role(raw.get("role") or "user")
        content = raw.get("content", "")
        if isinstance(content, list):
            content = tuple(content)
        elif content is None:
            content = ""
        return cls(role=role, content=content)


# WireMessage: provider-shaped ``{"role": str, "content": str | list}``.
WireMessage = dict[str, Any]


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------

@dataclass
class RequestSpec:
    """Everything the transport needs for one call."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    verify: Any = True  # ssl.SSLContext or True
    timeout: float = 120.0


@dataclass
class RawFrame:
    """One ``data:`` payload from the event stream."""

    payload: str


@dataclass
class UsageSummary:
    """Token accounting for one request."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int | None = None
    cache_read_tokens: int | None = None

    def to_dict(self) -> dict[str, int]:
        result = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }
        if self.cache_write_tokens is not None:
            result["cache_write_tokens"] = self.cache_write_tokens
        if self.cache_read_tokens is not None:
            result["cache_read_tokens"] = self.cache_read_tokens
        return result


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

class EventKind(enum.Enum):
    """Kinds of events handed to the caller."""

    CONTENT = "content"
    REASONING = "reasoning"
    USAGE = "usage"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamEvent:
    """Tagged union over content, reasoning, usage, done and error."""

    kind: EventKind
    text: str = ""
    usage: UsageSummary | None = None
    error: StreamwireError | None = None

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls(kind=EventKind.CONTENT, text=text)

    @classmethod
    def reasoning(cls, text: str) -> StreamEvent:
        return cls(kind=EventKind.REASONING, text=text)

    @classmethod
    def usage_event(cls, usage: UsageSummary) -> StreamEvent:
        return cls(kind=EventKind.USAGE, usage=usage)

    @classmethod
    def done(cls) -> StreamEvent:
        return cls(kind=EventKind.DONE)

    @classmethod
    def failure(cls, error: StreamwireError) -> StreamEvent:
        return cls(kind=EventKind.ERROR, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    @property
    def message(self) -> str:
        """Error message text, empty for non-error events."""
        return str(self.error) if self.error is not None else ""


# ---------------------------------------------------------------------------
# Model metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelInfo:
    """Static metadata about a model (prices are USD per million tokens)."""

    context_window: int = 128_000
    max_tokens: int = -1
    supports_prompt_cache: bool = False
    supports_images: bool = False
    input_price: float = 0.0
    output_price: float = 0.0
    cache_writes_price: float | None = None
    cache_reads_price: float | None = None
    reasoning_effort: str | None = None
    description: str = ""


@dataclass
class ModelSelection:
    """Resolved model id with its metadata and derived request params."""

    id: str
    info: ModelInfo
    max_tokens: int | None = None
    temperature: float | None = None
    reasoning_effort: str | None = None
