"""Stream relay: pump generated bytes from the upstream handle to the caller.

The pump is strictly pull-then-forward: one chunk is requested, forwarded,
and only then is the next one requested. The upstream handle is released on
every exit path, including cancellation.

Once response headers are out, the status is committed as 200. A mid-stream
upstream failure or timeout is signalled only by dropping the connection
without the chunked-encoding terminator; callers must treat a body that ends
that way as truncated.

The drop is done by raising StreamTruncated out of the ASGI app. It passes
through Starlette's ServerErrorMiddleware and uvicorn logs it on
``uvicorn.error`` as "Exception in ASGI application" with a traceback. That
record is expected for every truncated stream and duplicates the relay's own
``stream_failed`` or ``stream_timed_out`` line. ``TruncationLogFilter`` drops
it; ``telemetry.setup_logging`` attaches the filter at startup.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol

from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from portfolio_chat.provider import ByteStreamHandle


class ClientDisconnect(Exception):
    """Raised by an outbound channel whose peer has gone away."""


class StreamTruncated(Exception):
    """Raised after headers were sent to abort the connection mid-body."""


class TruncationLogFilter(logging.Filter):
    """Drops server error records caused by a StreamTruncated abort."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.exc_info and isinstance(record.exc_info[1], StreamTruncated):
            return False
        return True


class OutboundChannel(Protocol):
    async def send(self, chunk: bytes) -> None:
        ...

    async def close(self, complete: bool) -> None:
        ...


class RelayOutcome(enum.Enum):
    COMPLETED = "stream_completed"
    UPSTREAM_FAILED = "stream_failed"
    TIMED_OUT = "stream_timed_out"
    CLIENT_DISCONNECTED = "client_disconnected"


@dataclass
class RelayResult:
    """What happened during one relay run."""

    outcome: RelayOutcome
    chunks: int = 0
    bytes_sent: int = 0
    error: Optional[BaseException] = None

    @property
    def truncated(self) -> bool:
        return self.outcome in (RelayOutcome.UPSTREAM_FAILED, RelayOutcome.TIMED_OUT)


async def relay(
    handle: ByteStreamHandle,
    channel: OutboundChannel,
    deadline: Optional[float] = None,
) -> RelayResult:
    """Forward every chunk from ``handle`` to ``channel`` in order.

    Args:
        handle: Upstream byte stream, owned by this call from now on.
        channel: Outbound channel; ``close`` is called exactly once.
        deadline: Event-loop time after which pulling stops.

    Returns:
        A RelayResult describing how the pump ended.
    """
    loop = asyncio.get_running_loop()
    result = RelayResult(outcome=RelayOutcome.COMPLETED)
    complete = False

    try:
        while True:
            timeout = None
            if deadline is not None:
                timeout = max(0.0, deadline - loop.time())

            try:
                chunk = await asyncio.wait_for(handle.next(), timeout)
            except asyncio.TimeoutError as exc:
                result.outcome = RelayOutcome.TIMED_OUT
                result.error = exc
                break
            except Exception as exc:
                result.outcome = RelayOutcome.UPSTREAM_FAILED
                result.error = exc
                break

            if chunk is None:
                complete = True
                break
            if not chunk:
                continue

            try:
                await channel.send(chunk)
            except (ClientDisconnect, OSError) as exc:
                result.outcome = RelayOutcome.CLIENT_DISCONNECTED
                result.error = exc
                break

            result.chunks += 1
            result.bytes_sent += len(chunk)
    finally:
        try:
            await handle.aclose()
        finally:
            await channel.close(complete)

    return result


class ASGIChannel:
    """Outbound channel writing ``http.response.body`` messages."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.disconnected = False
        self.finished = False

    async def send(self, chunk: bytes) -> None:
        if self.disconnected:
            raise ClientDisconnect()
        try:
            await self._send(
                {"type": "http.response.body", "body": chunk, "more_body": True}
            )
        except OSError as exc:
            self.disconnected = True
            raise ClientDisconnect() from exc

    async def close(self, complete: bool) -> None:
        # Without the final message the server drops the connection instead
        # of writing the chunked terminator.
        if complete and not self.disconnected:
            await self._send({"type": "http.response.body", "body": b"", "more_body": False})
            self.finished = True


class RelayStreamingResponse(Response):
    """Plain-text streaming response driven by ``relay``."""

    media_type = "text/plain"

    def __init__(
        self,
        handle: ByteStreamHandle,
        deadline: Optional[float] = None,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        on_finish: Optional[Callable[[RelayResult], Any]] = None,
        background: Optional[BackgroundTask] = None,
    ) -> None:
        self.handle = handle
        self.deadline = deadline
        self.status_code = status_code
        self.on_finish = on_finish
        self.background = background
        self.init_headers(headers)

    async def _watch_disconnect(self, receive: Receive, channel: ASGIChannel) -> None:
        while True:
            message: Message = await receive()
            if message["type"] == "http.disconnect":
                channel.disconnected = True
                return

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        channel = ASGIChannel(send)
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
        except BaseException:
            await self.handle.aclose()
            raise

        pump = asyncio.ensure_future(relay(self.handle, channel, self.deadline))
        watcher = asyncio.ensure_future(self._watch_disconnect(receive, channel))
        stopped_pump = False
        try:
            done, _ = await asyncio.wait(
                {pump, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
            if pump not in done and not channel.finished:
                stopped_pump = pump.cancel()
        finally:
            watcher.cancel()
            if not pump.done() and not stopped_pump and not channel.finished:
                pump.cancel()
            await asyncio.wait({watcher})

        try:
            result = await pump
        except asyncio.CancelledError:
            if not stopped_pump:
                raise
            result = RelayResult(outcome=RelayOutcome.CLIENT_DISCONNECTED)

        if self.on_finish is not None:
            self.on_finish(result)

        if result.truncated:
            raise StreamTruncated(result.outcome.value) from result.error

        if self.background is not None:
            await self.background()
