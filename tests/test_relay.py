"""Tests for the stream relay and its ASGI response."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from portfolio_chat.provider import ByteStreamHandle, ErrorKind, GenerationError
from portfolio_chat.relay import (
    ClientDisconnect,
    RelayOutcome,
    RelayResult,
    RelayStreamingResponse,
    StreamTruncated,
    relay,
)


class _RecordingChannel:
    """Outbound channel that records what it was given."""

    def __init__(self, fail_after: Optional[int] = None) -> None:
        self.sent: List[bytes] = []
        self.closes: List[bool] = []
        self.fail_after = fail_after

    async def send(self, chunk: bytes) -> None:
        if self.closes:
            raise AssertionError("send after close")
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ClientDisconnect()
        self.sent.append(chunk)

    async def close(self, complete: bool) -> None:
        self.closes.append(complete)


class _Upstream:
    """Builds a handle and remembers how far it was pulled."""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None, stall: bool = False) -> None:
        self.chunks = chunks
        self.error = error
        self.stall = stall
        self.pulled = 0
        self.closed = 0

    async def _iter(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.pulled += 1
            yield chunk
        if self.error is not None:
            raise self.error
        if self.stall:
            await asyncio.Event().wait()

    async def _on_close(self) -> None:
        self.closed += 1

    def handle(self) -> ByteStreamHandle:
        return ByteStreamHandle(self._iter(), on_close=self._on_close)


@pytest.mark.asyncio
async def test_forwards_chunks_in_order_and_closes_once() -> None:
    upstream = _Upstream([b"Hola", b" mundo", b"!"])
    channel = _RecordingChannel()

    result = await relay(upstream.handle(), channel)

    assert channel.sent == [b"Hola", b" mundo", b"!"]
    assert b"".join(channel.sent) == b"Hola mundo!"
    assert channel.closes == [True]
    assert result.outcome is RelayOutcome.COMPLETED
    assert result.chunks == 3
    assert result.bytes_sent == len(b"Hola mundo!")
    assert upstream.closed == 1


@pytest.mark.asyncio
async def test_empty_upstream_completes() -> None:
    upstream = _Upstream([])
    channel = _RecordingChannel()

    result = await relay(upstream.handle(), channel)

    assert channel.sent == []
    assert channel.closes == [True]
    assert result.outcome is RelayOutcome.COMPLETED


@pytest.mark.asyncio
async def test_mid_stream_failure_forwards_partial_then_closes() -> None:
    error = GenerationError(ErrorKind.UPSTREAM_FAILURE, "boom")
    upstream = _Upstream([b"partial"], error=error)
    channel = _RecordingChannel()

    result = await asyncio.wait_for(relay(upstream.handle(), channel), timeout=2)

    assert channel.sent == [b"partial"]
    assert channel.closes == [False]
    assert result.outcome is RelayOutcome.UPSTREAM_FAILED
    assert result.error is error
    assert result.truncated
    assert upstream.closed == 1


@pytest.mark.asyncio
async def test_timeout_aborts_and_releases_upstream() -> None:
    upstream = _Upstream([b"first"], stall=True)
    channel = _RecordingChannel()
    deadline = asyncio.get_running_loop().time() + 0.1

    result = await asyncio.wait_for(relay(upstream.handle(), channel, deadline=deadline), timeout=2)

    assert result.outcome is RelayOutcome.TIMED_OUT
    assert channel.sent == [b"first"]
    assert channel.closes == [False]
    assert upstream.closed == 1


@pytest.mark.asyncio
async def test_disconnect_stops_pulling() -> None:
    """A broken channel ends the pump without draining the upstream."""
    upstream = _Upstream([b"a", b"b", b"c", b"d"])
    channel = _RecordingChannel(fail_after=1)

    result = await relay(upstream.handle(), channel)

    assert result.outcome is RelayOutcome.CLIENT_DISCONNECTED
    assert channel.sent == [b"a"]
    assert upstream.pulled == 2
    assert upstream.closed == 1
    assert channel.closes == [False]


@pytest.mark.asyncio
async def test_cancellation_releases_upstream() -> None:
    upstream = _Upstream([b"first"], stall=True)
    channel = _RecordingChannel()

    task = asyncio.ensure_future(relay(upstream.handle(), channel))
    while not channel.sent:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert upstream.closed == 1
    assert channel.closes == [False]


def _bodies(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [m for m in messages if m["type"] == "http.response.body"]


async def _idle_receive() -> Dict[str, Any]:
    await asyncio.Event().wait()
    return {"type": "http.disconnect"}


@pytest.mark.asyncio
async def test_response_streams_and_terminates() -> None:
    upstream = _Upstream([b"Hola", b" mundo"])
    sent: List[Dict[str, Any]] = []
    results: List[RelayResult] = []

    async def send(message: Dict[str, Any]) -> None:
        sent.append(message)

    response = RelayStreamingResponse(
        upstream.handle(), headers={"X-RateLimit-Remaining": "4"}, on_finish=results.append
    )
    await asyncio.wait_for(response({"type": "http"}, _idle_receive, send), timeout=2)

    start = sent[0]
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    headers = dict(start["headers"])
    assert headers[b"content-type"].startswith(b"text/plain")
    assert headers[b"x-ratelimit-remaining"] == b"4"
    assert b"content-length" not in headers
    assert _bodies(sent) == [
        {"type": "http.response.body", "body": b"Hola", "more_body": True},
        {"type": "http.response.body", "body": b" mundo", "more_body": True},
        {"type": "http.response.body", "body": b"", "more_body": False},
    ]
    assert results[0].outcome is RelayOutcome.COMPLETED


@pytest.mark.asyncio
async def test_response_mid_stream_failure_leaves_body_unterminated() -> None:
    upstream = _Upstream([b"partial"], error=GenerationError(ErrorKind.UPSTREAM_FAILURE, "boom"))
    sent: List[Dict[str, Any]] = []
    results: List[RelayResult] = []

    async def send(message: Dict[str, Any]) -> None:
        sent.append(message)

    response = RelayStreamingResponse(upstream.handle(), on_finish=results.append)
    with pytest.raises(StreamTruncated):
        await asyncio.wait_for(response({"type": "http"}, _idle_receive, send), timeout=2)

    assert _bodies(sent) == [{"type": "http.response.body", "body": b"partial", "more_body": True}]
    assert results[0].outcome is RelayOutcome.UPSTREAM_FAILED
    assert upstream.closed == 1


@pytest.mark.asyncio
async def test_response_stops_pump_on_disconnect() -> None:
    """A disconnect while the upstream stalls cancels the pump promptly."""
    upstream = _Upstream([b"first"], stall=True)
    sent: List[Dict[str, Any]] = []
    results: List[RelayResult] = []
    first_body = asyncio.Event()

    async def send(message: Dict[str, Any]) -> None:
        sent.append(message)
        if message["type"] == "http.response.body":
            first_body.set()

    async def receive() -> Dict[str, Any]:
        await first_body.wait()
        return {"type": "http.disconnect"}

    response = RelayStreamingResponse(upstream.handle(), on_finish=results.append)
    await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=2)

    assert _bodies(sent) == [{"type": "http.response.body", "body": b"first", "more_body": True}]
    assert results[0].outcome is RelayOutcome.CLIENT_DISCONNECTED
    assert upstream.closed == 1


@pytest.mark.asyncio
async def test_response_send_oserror_is_disconnect() -> None:
    upstream = _Upstream([b"a", b"b", b"c"])
    results: List[RelayResult] = []

    async def send(message: Dict[str, Any]) -> None:
        if message["type"] == "http.response.body":
            raise OSError("broken pipe")

    response = RelayStreamingResponse(upstream.handle(), on_finish=results.append)
    await asyncio.wait_for(response({"type": "http"}, _idle_receive, send), timeout=2)

    assert results[0].outcome is RelayOutcome.CLIENT_DISCONNECTED
    assert upstream.pulled == 1
    assert upstream.closed == 1
