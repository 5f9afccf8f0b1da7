"""FastAPI application for the portfolio chat relay.

Provides a single /api/chat endpoint that enforces the per-client quota,
assembles the hardened system prompt, opens a streaming generation call, and
relays the generated text to the caller as it arrives.

Request flow:
1. Derive the client identifier from the network address
2. Consume one unit of quota (fail-open if the store is unavailable)
3. Assemble the system prompt next to the caller's messages
4. Open the upstream stream
5. Relay bytes until exhaustion, failure, timeout, or disconnect
"""

import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from portfolio_chat.config import AppConfig, load_config
from portfolio_chat.limiter import QuotaExceeded, RateLimiter, build_limiter
from portfolio_chat.models import ChatRequest, ErrorResponse
from portfolio_chat.prompt import assemble
from portfolio_chat.provider import GenerationClient, GenerationError
from portfolio_chat.quota import QuotaDecision
from portfolio_chat.relay import RelayResult, RelayStreamingResponse
from portfolio_chat.telemetry import log_request, setup_logging

CONFIG_PATH = os.getenv("CHAT_CONFIG")
LOOPBACK = "127.0.0.1"
GENERATION_ERROR_MESSAGE = "Error generating response"

_config: Optional[AppConfig] = None
_limiter: Optional[RateLimiter] = None
_generation_client: Optional[GenerationClient] = None


def get_config() -> AppConfig:
    """Return the relay configuration (lazy-init).

    Uses the JSON file named by CHAT_CONFIG when set, defaults otherwise.
    """
    global _config
    if _config is None:
        _config = load_config(CONFIG_PATH) if CONFIG_PATH else AppConfig()
    return _config


def get_limiter() -> RateLimiter:
    """Return the rate limiter (lazy-init from config)."""
    global _limiter
    if _limiter is None:
        _limiter = build_limiter(get_config())
    return _limiter


def get_generation_client() -> GenerationClient:
    """Return the generation client (lazy-init from config)."""
    global _generation_client
    if _generation_client is None:
        cfg = get_config()
        _generation_client = GenerationClient(
            cfg.provider, timeout=cfg.request_timeout_seconds
        )
    return _generation_client


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Initialize config, logging, and the rate limiter on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file, cfg.log_level)
    get_limiter()
    get_generation_client()
    yield


app = FastAPI(title="Portfolio Chat Relay", version="0.1.0", lifespan=lifespan)


def client_identifier(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None and request.client.host:
        return request.client.host
    return LOOPBACK


def _rate_limit_headers(decision: QuotaDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset),
    }


def _error_response(status: int, message: str) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=message)
    return JSONResponse(status_code=status, content=body.model_dump())


@app.post("/api/chat", response_model=None)
async def chat(body: ChatRequest, request: Request) -> Response:
    """Stream a reply to the caller's conversation.

    Errors before the first byte map to fixed responses (429, 500). After
    that the status is committed and a failure only truncates the body.
    """
    config = get_config()
    limiter = get_limiter()
    generator = get_generation_client()
    request_id = "chat-{}".format(uuid.uuid4().hex[:12])
    client_id = client_identifier(request)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.request_timeout_seconds

    # --- Rate limiting ---
    try:
        decision = await limiter.enforce(client_id)
    except QuotaExceeded as exc:
        log_request(
            request_id=request_id,
            client_id=client_id,
            outcome="rate_limited",
            quota=asdict(exc.decision),
            error=exc.detail,
        )
        return Response(
            "Too Many Requests",
            status_code=429,
            headers=_rate_limit_headers(exc.decision),
            media_type="text/plain",
        )

    # --- Prompt assembly ---
    prompt = assemble(body.messages)

    # --- Generation call setup ---
    try:
        handle = await asyncio.wait_for(
            generator.stream(prompt), timeout=max(0.0, deadline - loop.time())
        )
    except GenerationError as exc:
        log_request(
            request_id=request_id,
            client_id=client_id,
            outcome="generation_error",
            quota=asdict(decision),
            error="{}: {}".format(exc.kind.value, exc.detail),
        )
        return _error_response(500, GENERATION_ERROR_MESSAGE)
    except asyncio.TimeoutError:
        log_request(
            request_id=request_id,
            client_id=client_id,
            outcome="generation_error",
            quota=asdict(decision),
            error="upstream_failure: timed out opening stream",
        )
        return _error_response(500, GENERATION_ERROR_MESSAGE)

    # --- Streaming ---
    def _on_finish(result: RelayResult) -> None:
        log_request(
            request_id=request_id,
            client_id=client_id,
            outcome=result.outcome.value,
            quota=asdict(decision),
            stream={"chunks": result.chunks, "bytes": result.bytes_sent},
            error=str(result.error) if result.error is not None else None,
        )

    return RelayStreamingResponse(
        handle,
        deadline=deadline,
        headers=_rate_limit_headers(decision),
        on_finish=_on_finish,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's validation errors into our error envelope format."""
    return _error_response(422, "Invalid request body")
