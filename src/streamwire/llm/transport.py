"""HTTP(S) transport on ``httpx.AsyncClient``.

One client (and so one connection) per request.  The whole request,
connect through body drain, shares a single wall-clock budget.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlparse

import httpx

from streamwire.diagnostics import DiagnosticsSink, safe_append
from streamwire.errors import TransportError
from streamwire.types import RequestSpec

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "streamwire/0.1",
    "Accept": "*/*",
    "Content-Type": "application/json",
}


def build_headers(api_key: str | None, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge default and caller headers, then add the bearer credential.

    Header names are case-insensitive.  A caller-supplied Authorization
    header (any casing) suppresses credential injection.
    """
    headers = httpx.Headers(DEFAULT_HEADERS)
    for name, value in (extra or {}).items():
        headers[name] = value
    if "authorization" not in headers and api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return {name: value for name, value in headers.items()}


def load_trust(
    ca_bundle_path: str | None,
    diagnostics: DiagnosticsSink | None = None,
) -> ssl.SSLContext | None:
    """Build an SSL context trusting *ca_bundle_path*, or ``None``.

    A missing or unreadable bundle is reported and the default trust
    store is used instead.
    """
    if not ca_bundle_path:
        return None
    path = Path(ca_bundle_path).expanduser()
    safe_append(diagnostics, f"Provided CA bundle path: {path}")
    if not path.exists():
        _logger.warning("CA bundle path does not exist: %s", path)
        safe_append(diagnostics, f"CA bundle path does not exist: {path}")
        return None
    try:
        context = ssl.create_default_context(cafile=str(path))
    except (OSError, ssl.SSLError) as e:
        _logger.warning("Error reading CA bundle %s: %s", path, e)
        safe_append(diagnostics, f"Error reading CA bundle: {e}")
        return None
    safe_append(diagnostics, f"Using CA bundle for HTTPS requests: {path}")
    return context


def verify_for(url: str, trust: ssl.SSLContext | None) -> ssl.SSLContext | bool:
    """TLS configuration for *url*: the custom trust only for ``https``."""
    if urlparse(url).scheme == "https" and trust is not None:
        return trust
    return True


class TransportResponse:
    """Status, headers and a once-only byte stream under a deadline."""

    def __init__(self, response: httpx.Response, deadline: float) -> None:
        self._response = response
        self._deadline = deadline
        self.status_code = response.status_code
        self.headers = response.headers

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def _remaining(self) -> float:
        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise TransportError("Request timed out")
        return remaining

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks as they arrive."""
        chunks = self._response.aiter_bytes().__aiter__()
        while True:
            try:
                chunk = await asyncio.wait_for(chunks.__anext__(), self._remaining())
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError as e:
                raise TransportError("Request timed out while reading the response") from e
            except httpx.TimeoutException as e:
                raise TransportError(f"Request timed out: {e}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"Connection error while reading: {e}") from e
            yield chunk

    async def aread(self) -> bytes:
        """Drain the whole body."""
        body = bytearray()
        async for chunk in self.aiter_bytes():
            body += chunk
        return bytes(body)


class Transport:
    """Opens one HTTP(S) connection per request.

    Parameters
    ----------
    http_transport:
        Optional ``httpx.AsyncBaseTransport`` (tests pass
        ``httpx.MockTransport``).
    """

    def __init__(self, http_transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._http_transport = http_transport

    def _client(self, request: RequestSpec) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(request.timeout),
            "follow_redirects": True,
        }
        if self._http_transport is not None:
            kwargs["transport"] = self._http_transport
        elif request.verify is not True:
            kwargs["verify"] = request.verify
        return httpx.AsyncClient(**kwargs)

    @asynccontextmanager
    async def open(self, request: RequestSpec) -> AsyncIterator[TransportResponse]:
        """Send *request*; the response is valid inside the ``async with``.

        Raises
        ------
        TransportError
            On connection refusal, DNS or TLS failure, timeout, redirect
            loops and undecodable bodies.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + request.timeout
        async with self._client(request) as client:
            http_request = client.build_request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body if request.method != "GET" else None,
            )
            try:
                response = await asyncio.wait_for(
                    client.send(http_request, stream=True), request.timeout,
                )
            except asyncio.TimeoutError as e:
                raise TransportError(f"Request timed out after {request.timeout:g}s") from e
            except httpx.TimeoutException as e:
                raise TransportError(f"Request timed out: {e}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"Connection error: {e}") from e

            try:
                yield TransportResponse(response, deadline)
            finally:
                await response.aclose()

    async def get_json(self, url: str, headers: Mapping[str, str], verify: Any = True,
                       timeout: float = DEFAULT_TIMEOUT) -> Any:
        """GET *url* and decode its JSON body."""
        request = RequestSpec(
            url=url, body={}, headers=dict(headers), method="GET",
            verify=verify, timeout=timeout,
        )
        async with self.open(request) as response:
            body = await response.aread()
            if not response.is_success:
                raise TransportError(f"GET {url} returned {response.status_code}")
        return json.loads(body)
