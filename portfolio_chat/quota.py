"""Quota store adapters for the portfolio chat relay.

Both stores implement the same sliding-window approximation: the count for
the current fixed window plus the previous window's count weighted by how much
of it still overlaps the trailing interval. Increment-and-check is atomic per
identifier: server-side in a single Lua script for the Upstash store, under a
lock for the in-process store.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

import httpx


class StoreError(Exception):
    """Raised when the quota store is unreachable or returns garbage."""


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a single quota acquisition.

    ``reset`` is the Unix time in milliseconds at which the current window
    ends (0 for fail-open sentinels).
    """

    allowed: bool
    limit: int
    remaining: int
    reset: int


class QuotaStore(Protocol):
    async def try_acquire(self, identifier: str) -> QuotaDecision:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


# KEYS[1] current window key, KEYS[2] previous window key
# ARGV[1] limit, ARGV[2] now (ms), ARGV[3] window (ms)
# Returns -1 when denied, otherwise the remaining budget.
SLIDING_WINDOW_SCRIPT = """
local current_key = KEYS[1]
local previous_key = KEYS[2]
local limit = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local window = tonumber(ARGV[3])

local current = tonumber(redis.call("GET", current_key) or "0")
local previous = tonumber(redis.call("GET", previous_key) or "0")
local weight = 1 - ((now % window) / window)
previous = math.floor(previous * weight)

if previous + current >= limit then
  return -1
end

local updated = redis.call("INCR", current_key)
if updated == 1 then
  redis.call("PEXPIRE", current_key, window * 2 + 1000)
end
return limit - (updated + previous)
"""


class UpstashQuotaStore:
    """Sliding-window quota backed by the Upstash Redis REST API."""

    def __init__(
        self,
        url: str,
        token: str,
        limit: int = 5,
        window_seconds: int = 60,
        prefix: str = "ratelimit",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.url = url.rstrip("/")
        self.token = token
        self.limit = limit
        self.window_ms = window_seconds * 1000
        self.prefix = prefix
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

    def _key(self, identifier: str, window_index: int) -> str:
        return "{}:{}:{}".format(self.prefix, identifier, window_index)

    async def try_acquire(self, identifier: str) -> QuotaDecision:
        """Consume one unit of quota for ``identifier``.

        Raises:
            StoreError: On any transport failure, non-2xx status, or a reply
                that carries an error or a non-integer result.
        """
        now = self._clock()
        window_index = now // self.window_ms
        command = [
            "EVAL",
            SLIDING_WINDOW_SCRIPT,
            "2",
            self._key(identifier, window_index),
            self._key(identifier, window_index - 1),
            str(self.limit),
            str(now),
            str(self.window_ms),
        ]
        headers = {"Authorization": "Bearer {}".format(self.token)}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.url, json=command, headers=headers)
                resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                "Quota store returned HTTP {}".format(exc.response.status_code)
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreError("Quota store request failed: {}".format(exc)) from exc

        if not isinstance(data, dict) or "error" in data:
            detail = data.get("error") if isinstance(data, dict) else data
            raise StoreError("Quota store error: {}".format(detail))

        result = data.get("result")
        if not isinstance(result, int) or isinstance(result, bool):
            raise StoreError("Unexpected quota store result: {!r}".format(result))

        reset = (window_index + 1) * self.window_ms
        if result < 0:
            return QuotaDecision(False, self.limit, 0, reset)
        return QuotaDecision(True, self.limit, max(0, result), reset)


class InMemoryQuotaStore:
    """Process-local sliding-window quota.

    Suitable for single-instance deployments and tests only: counters are not
    shared across processes.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: int = 60,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.limit = limit
        self.window_ms = window_seconds * 1000
        self._clock = clock
        self._lock = threading.Lock()
        # identifier -> {window_index: count}
        self._windows: Dict[str, Dict[int, int]] = {}
        self._swept_window: Optional[int] = None

    async def try_acquire(self, identifier: str) -> QuotaDecision:
        allowed, remaining, reset = self._acquire(identifier, self._clock())
        return QuotaDecision(allowed, self.limit, remaining, reset)

    def _acquire(self, identifier: str, now: int) -> Tuple[bool, int, int]:
        window_index = now // self.window_ms
        reset = (window_index + 1) * self.window_ms

        with self._lock:
            if window_index != self._swept_window:
                self._sweep(window_index)

            counts = self._windows.setdefault(identifier, {})
            for stale in [w for w in counts if w < window_index - 1]:
                del counts[stale]

            current = counts.get(window_index, 0)
            weight = 1 - (now % self.window_ms) / self.window_ms
            previous = math.floor(counts.get(window_index - 1, 0) * weight)

            if previous + current >= self.limit:
                return False, 0, reset

            counts[window_index] = current + 1
            return True, max(0, self.limit - (current + 1 + previous)), reset

    def _sweep(self, window_index: int) -> None:
        """Forget identifiers with no count in the current or previous window.

        Runs once per window under the lock, so the map only holds callers
        seen within the last two windows.
        """
        oldest = window_index - 1
        idle = [
            identifier
            for identifier, counts in self._windows.items()
            if not counts or max(counts) < oldest
        ]
        for identifier in idle:
            del self._windows[identifier]
        self._swept_window = window_index
