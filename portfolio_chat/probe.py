"""Smoke probe for a running relay.

Posts one message to /api/chat, streams the reply, and reports chunk count,
size, and duration. A stream that breaks before the terminating chunk, a
non-200 status, or suspiciously short content is reported as a failure.

Usage::

    python -m portfolio_chat.probe --url http://localhost:8000/api/chat
"""

import argparse
import sys
import time
from dataclasses import dataclass
from typing import List, Optional

import httpx

MIN_CONTENT_LENGTH = 10


@dataclass
class ProbeResult:
    status_code: int
    chunks: int
    content: str
    duration_ms: int
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return (
            self.status_code == 200
            and self.error is None
            and len(self.content) >= MIN_CONTENT_LENGTH
        )


def run_probe(
    url: str,
    message: str,
    timeout: float = 60.0,
    verbose: bool = False,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProbeResult:
    """Stream one reply from ``url`` and collect what arrived."""
    start = time.time()
    parts: List[str] = []
    chunks = 0
    status_code = 0
    error = None

    body = {"messages": [{"role": "user", "content": message}]}
    with httpx.Client(timeout=timeout, transport=transport) as client:
        try:
            with client.stream("POST", url, json=body) as resp:
                status_code = resp.status_code
                if status_code != 200:
                    resp.read()
                    error = "HTTP {}: {}".format(status_code, resp.text)
                else:
                    for text in resp.iter_text():
                        if not text:
                            continue
                        chunks += 1
                        parts.append(text)
                        if verbose:
                            print("chunk [{}]: {!r}".format(len(text), text))
        except httpx.HTTPError as exc:
            error = "Stream ended abnormally after {} chunks: {}".format(chunks, exc)

    return ProbeResult(
        status_code=status_code,
        chunks=chunks,
        content="".join(parts),
        duration_ms=int((time.time() - start) * 1000),
        error=error,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Probe the chat relay stream.")
    parser.add_argument("--url", default="http://localhost:8000/api/chat")
    parser.add_argument("--message", default="Hola, ¿quién eres?")
    parser.add_argument("--timeout", type=float, default=60.0)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    result = run_probe(args.url, args.message, timeout=args.timeout, verbose=args.verbose)

    print("Status: {}".format(result.status_code))
    print("Duration: {}ms".format(result.duration_ms))
    print("Chunks: {}".format(result.chunks))
    print("Content length: {} chars".format(len(result.content)))
    print("Preview: {!r}".format(result.content[:50]))

    if result.error:
        print("FAIL: {}".format(result.error))
    elif not result.passed:
        print("FAIL: content too short, likely cut off")
    else:
        print("PASS")
    return 0 if result.passed else 1


if __name__ == "__main__":
    sys.exit(main())
