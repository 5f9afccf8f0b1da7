"""Generation client for the hosted Gemini text-generation API.

Opens a streaming ``streamGenerateContent`` call and hands back a
ByteStreamHandle that yields the generated text as UTF-8 byte chunks, one
server-sent event at a time.
"""

import enum
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional

import httpx

from portfolio_chat.config import ProviderConfig
from portfolio_chat.models import ChatMessage
from portfolio_chat.prompt import ComposedPrompt


class ErrorKind(enum.Enum):
    MISSING_CREDENTIAL = "missing_credential"
    UPSTREAM_FAILURE = "upstream_failure"


class GenerationError(Exception):
    """Raised when the generation call cannot be set up or breaks mid-stream."""

    def __init__(self, kind: ErrorKind, detail: str) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__("{}: {}".format(kind.value, detail))


class ByteStreamHandle:
    """Lazy, finite, non-restartable sequence of byte chunks.

    ``next()`` returns the next chunk, ``None`` once the upstream is
    exhausted, or raises whatever the upstream raised. Nothing is pulled from
    the upstream until ``next()`` is awaited.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._chunks = chunks
        self._on_close = on_close
        self._started = False
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def next(self) -> Optional[bytes]:
        if self._exhausted:
            return None
        if self._closed:
            raise RuntimeError("Stream handle is closed")
        self._started = True
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            await self.aclose()
            return None

    async def aclose(self) -> None:
        """Release the upstream connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()

    def __aiter__(self) -> "ByteStreamHandle":
        if self._started:
            raise RuntimeError("Stream handle cannot be restarted")
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.next()
        if chunk is None:
            raise StopAsyncIteration
        return chunk


def _gemini_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    return [
        {
            "role": "model" if m.role == "assistant" else "user",
            "parts": [{"text": m.content}],
        }
        for m in messages
    ]


def _candidate_texts(event: Dict[str, Any]) -> Iterator[str]:
    for candidate in event.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if text:
                yield text


async def _sse_text_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the UTF-8 text of every candidate part in an SSE response."""
    try:
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if not data:
                continue
            try:
                event = json.loads(data)
            except ValueError as exc:
                raise GenerationError(
                    ErrorKind.UPSTREAM_FAILURE, "Malformed stream event"
                ) from exc
            if "error" in event:
                error = event["error"]
                message = error.get("message") if isinstance(error, dict) else error
                raise GenerationError(ErrorKind.UPSTREAM_FAILURE, str(message))
            for text in _candidate_texts(event):
                yield text.encode("utf-8")
    except httpx.HTTPError as exc:
        raise GenerationError(
            ErrorKind.UPSTREAM_FAILURE, "Stream interrupted: {}".format(exc)
        ) from exc


class GenerationClient:
    """Streams completions from the configured provider."""

    def __init__(
        self,
        provider: ProviderConfig,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self._transport = transport

    async def stream(self, prompt: ComposedPrompt) -> ByteStreamHandle:
        """Open a streaming generation call for ``prompt``.

        Returns once the upstream has accepted the request; no body bytes
        have been read at that point.

        Raises:
            GenerationError: MISSING_CREDENTIAL if no API key resolves,
                UPSTREAM_FAILURE if the call fails before streaming starts.
        """
        api_key = self.provider.api_key
        if not api_key:
            raise GenerationError(
                ErrorKind.MISSING_CREDENTIAL, "No API key configured for provider"
            )

        url = "{}/models/{}:streamGenerateContent".format(
            self.provider.base_url.rstrip("/"), self.provider.model
        )
        payload = {
            "systemInstruction": {"parts": [{"text": prompt.system}]},
            "contents": _gemini_contents(list(prompt.messages)),
        }
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        request = client.build_request(
            "POST", url, params={"alt": "sse"}, json=payload, headers=headers
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            raise GenerationError(
                ErrorKind.UPSTREAM_FAILURE, "Failed to reach provider: {}".format(exc)
            ) from exc
        except BaseException:
            await client.aclose()
            raise

        if response.status_code >= 400:
            await response.aclose()
            await client.aclose()
            raise GenerationError(
                ErrorKind.UPSTREAM_FAILURE,
                "Provider returned HTTP {}".format(response.status_code),
            )

        async def _release() -> None:
            try:
                await response.aclose()
            finally:
                await client.aclose()

        return ByteStreamHandle(_sse_text_chunks(response), on_close=_release)
