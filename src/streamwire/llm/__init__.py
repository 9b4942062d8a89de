"""Completion client pipeline: formatter, transport, parser, normalizer, handler."""

from streamwire.llm.formatter import FormatMode, apply_prompt_cache, format_messages, resolve_mode
from streamwire.llm.handler import CompletionHandler, CreateMessageOptions
from streamwire.llm.normalizer import StreamNormalizer
from streamwire.llm.parser import FrameParser, ThinkTagSplitter
from streamwire.llm.transport import Transport, build_headers

__all__ = [
    "CompletionHandler",
    "CreateMessageOptions",
    "FormatMode",
    "FrameParser",
    "StreamNormalizer",
    "ThinkTagSplitter",
    "Transport",
    "apply_prompt_cache",
    "build_headers",
    "format_messages",
    "resolve_mode",
]
