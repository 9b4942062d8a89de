"""HTTP doubles for streamwire tests."""

from __future__ import annotations

import asyncio
import json

import httpx

SCENARIO_C = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n'
    b"data: [DONE]\n"
)

SCENARIO_D = json.dumps({
    "choices": [{"message": {"content": "hi"}}],
    "usage": {"prompt_tokens": 5, "completion_tokens": 2},
}).encode()


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given chunks, optionally stalling."""

    def __init__(self, chunks: list[bytes], stall_after: int | None = None) -> None:
        self._chunks = chunks
        self._stall_after = stall_after
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self._chunks):
            if self._stall_after is not None and i == self._stall_after:
                await asyncio.sleep(30)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, status: int = 200, chunks: list[bytes] | None = None,
                 stall_after: int | None = None, exc: Exception | None = None) -> None:
        self.status = status
        self.chunks = chunks if chunks is not None else [SCENARIO_C]
        self.stall_after = stall_after
        self.exc = exc
        self.requests: list[httpx.Request] = []
        self.streams: list[ChunkStream] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        stream = ChunkStream(list(self.chunks), self.stall_after)
        self.streams.append(stream)
        return httpx.Response(self.status, stream=stream)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)
