"""Completion handler: formatter + transport + parser + normalizer.

``create_message()`` is an async generator, a lazy, finite,
non-restartable sequence of :class:`StreamEvent`.  Each awaited chunk is
parsed and its events are yielded before the next chunk is requested.
Closing the generator early closes the HTTP connection.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Mapping

import httpx

from streamwire.config import ProviderSettings
from streamwire.diagnostics import DiagnosticsSink, LoggingSink, redact_headers, safe_append
from streamwire.errors import ConfigError, FormatError, TransportError, with_prefix
from streamwire.models import get_model_info, get_model_params
from streamwire.types import (
    ConversationTurn,
    EventKind,
    ModelSelection,
    RequestSpec,
    StreamEvent,
)

from .formatter import FormatMode, apply_prompt_cache, format_messages, resolve_mode
from .normalizer import StreamNormalizer
from .parser import FrameParser
from .transport import Transport, build_headers, load_trust, verify_for

_logger = logging.getLogger(__name__)

# Hosts that reject ``stream_options``
_NO_STREAM_OPTIONS_HOSTS = ("x.ai",)


@dataclass
class CreateMessageOptions:
    """Per-call knobs recognized by :meth:`CompletionHandler.create_message`."""

    include_max_tokens: bool | None = None
    max_tokens: int | None = None
    temperature: float | None = None


class CompletionHandler:
    """Single-provider completion client.

    Parameters
    ----------
    settings:
        Resolved :class:`ProviderSettings`; read-only for the handler's life.
    diagnostics:
        Sink for request tracing (defaults to :class:`LoggingSink`).
    http_transport:
        Optional ``httpx.AsyncBaseTransport`` injected into every request.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        diagnostics: DiagnosticsSink | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if settings.requires_api_key and not settings.api_key:
            raise ConfigError(f"{settings.display_name} API key is required")
        self.settings = settings
        self._diagnostics = diagnostics if diagnostics is not None else LoggingSink()
        self._transport = Transport(http_transport)
        self._trust = load_trust(settings.ca_bundle_path, self._diagnostics)
        self._headers = build_headers(settings.api_key, settings.headers)

    # ------------------------------------------------------------------
    # Model selection
    # ------------------------------------------------------------------

    def get_model(self, options: CreateMessageOptions | None = None) -> ModelSelection:
        """Resolved model id, metadata and derived params.  No I/O."""
        model_id = self.settings.model_id
        info = get_model_info(model_id)
        return get_model_params(model_id, info, self.settings, options)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        system_prompt: str | None,
        history: Iterable[ConversationTurn | Mapping[str, Any]],
        options: CreateMessageOptions | None = None,
        prompt: str | None = None,
    ) -> RequestSpec:
        """Format the conversation and assemble the request.

        Raises
        ------
        FormatError
            Before any I/O, when there is nothing for the model to answer.
        """
        model = self.get_model(options)
        mode = resolve_mode(model.id, self.settings.format)

        if system_prompt is None:
            messages = format_messages("", history, FormatMode.PLAIN, prompt=prompt)[1:]
        else:
            messages = format_messages(system_prompt, history, mode, prompt=prompt)
            if mode == FormatMode.PLAIN and model.info.supports_prompt_cache:
                messages = apply_prompt_cache(messages)

        body: dict[str, Any] = {"model": model.id, "messages": messages}
        if self.settings.streaming:
            body["stream"] = True
            if not any(h in self.settings.host for h in _NO_STREAM_OPTIONS_HOSTS):
                body["stream_options"] = {"include_usage": True}
        if mode == FormatMode.DEVELOPER:
            if model.reasoning_effort:
                body["reasoning_effort"] = model.reasoning_effort
        elif model.temperature is not None:
            body["temperature"] = model.temperature
        if model.max_tokens:
            body["max_completion_tokens"] = model.max_tokens

        url = self.settings.url
        return RequestSpec(
            url=url,
            body=body,
            headers=dict(self._headers),
            verify=verify_for(url, self._trust),
            timeout=self.settings.timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def create_message(
        self,
        system_prompt: str | None,
        history: Iterable[ConversationTurn | Mapping[str, Any]],
        options: CreateMessageOptions | None = None,
        prompt: str | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Send one request and yield its normalized events.

        The last event is always ``done`` or ``error``.
        """
        normalizer = StreamNormalizer(
            self._diagnostics, split_think_tags=self.settings.split_think_tags,
        )
        try:
            request = self.build_request(system_prompt, history, options, prompt)
        except FormatError as e:
            yield normalizer.failure(e)
            return

        self._trace_request(request)
        parser = FrameParser()
        start = time.monotonic()
        try:
            async with self._transport.open(request) as response:
                safe_append(self._diagnostics, f"Status: {response.status_code}")
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    safe_append(self._diagnostics, f"Error body: {body[:1000]}")
                    yield normalizer.protocol_failure(response.status_code, body)
                    return

                async for chunk in response.aiter_bytes():
                    _logger.debug("Chunk: %s", chunk.decode("utf-8", errors="replace"))
                    for frame in parser.feed(chunk):
                        for event in normalizer.process(frame):
                            yield event
                            if event.is_terminal:
                                return
                    if parser.done:
                        break

            for frame in parser.flush():
                for event in normalizer.process(frame):
                    yield event
                    if event.is_terminal:
                        return
            events = normalizer.finish(parser.raw_text)
            latency = (time.monotonic() - start) * 1000
            safe_append(
                self._diagnostics,
                f"Response complete in {latency:.0f}ms: {len(parser.raw_text)} chars, "
                f"{normalizer.content_count} content fragments",
            )
            for event in events:
                yield event
        except TransportError as e:
            parser.flush()
            _logger.warning("%s request failed: %s", self.settings.display_name, e)
            safe_append(self._diagnostics, f"Transport error: {e}")
            yield normalizer.failure(e)
        finally:
            parser.release()

    def _trace_request(self, request: RequestSpec) -> None:
        safe_append(self._diagnostics, f"[{self.settings.display_name}] Request:")
        safe_append(self._diagnostics, f"URL: {request.url}")
        safe_append(self._diagnostics, f"Model: {request.body.get('model')}")
        safe_append(self._diagnostics, f"Headers: {json.dumps(redact_headers(request.headers))}")
        safe_append(
            self._diagnostics,
            f"Payload: {len(request.body.get('messages', []))} messages, "
            f"stream={bool(request.body.get('stream'))}",
        )
        _logger.debug("POST %s model=%s", request.url, request.body.get("model"))

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    async def complete_prompt(self, prompt: str) -> str:
        """Single user turn in, full answer text out.

        Raises the first error event as an exception whose message names
        the provider.
        """
        parts: list[str] = []
        events = self.create_message(None, [], prompt=prompt)
        try:
            async for event in events:
                if event.kind == EventKind.CONTENT:
                    parts.append(event.text)
                elif event.kind == EventKind.ERROR and event.error is not None:
                    raise with_prefix(
                        event.error, f"{self.settings.display_name} completion error",
                    ) from event.error
        finally:
            await events.aclose()
        return "".join(parts)

    async def list_models(self) -> list[str]:
        """Model ids advertised at ``<base_url>/models``; ``[]`` on any failure."""
        url = self.settings.models_url
        safe_append(self._diagnostics, f"Listing models: {url}")
        try:
            data = await self._transport.get_json(
                url,
                self._headers,
                verify=verify_for(url, self._trust),
                timeout=self.settings.timeout_seconds,
            )
        except (TransportError, ValueError) as e:
            _logger.warning("Could not list models from %s: %s", url, e)
            return []

        entries = data.get("data") if isinstance(data, dict) else None
        ids: list[str] = []
        for entry in entries or []:
            model_id = entry.get("id") if isinstance(entry, dict) else None
            if model_id and model_id not in ids:
                ids.append(model_id)
        return ids
