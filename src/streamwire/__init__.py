"""streamwire: streaming chat-completion client for OpenAI-compatible endpoints."""

from streamwire.config import ProviderSettings, StreamwireConfig, load_config, resolve_settings
from streamwire.errors import (
    ConfigError,
    DecodeError,
    ErrorKind,
    FormatError,
    NoContentError,
    ProtocolError,
    StreamwireError,
    TransportError,
)
from streamwire.llm import CompletionHandler, CreateMessageOptions, FormatMode
from streamwire.types import ConversationTurn, EventKind, Role, StreamEvent, UsageSummary

__version__ = "0.1.0"

__all__ = [
    "CompletionHandler",
    "ConfigError",
    "ConversationTurn",
    "CreateMessageOptions",
    "DecodeError",
    "ErrorKind",
    "EventKind",
    "FormatError",
    "FormatMode",
    "NoContentError",
    "ProtocolError",
    "ProviderSettings",
    "Role",
    "StreamEvent",
    "StreamwireConfig",
    "StreamwireError",
    "TransportError",
    "UsageSummary",
    "load_config",
    "resolve_settings",
]
