"""Rate limiter for the portfolio chat relay.

Wraps a quota store with a three-way policy:

- no store configured: allow with the local-development budget;
- store configured but failing: allow with the reduced fail-open budget and
  log the failure;
- store healthy: return exactly what the store decided.
"""

import asyncio
import logging
from typing import Optional

from portfolio_chat.config import AppConfig
from portfolio_chat.quota import (
    InMemoryQuotaStore,
    QuotaDecision,
    QuotaStore,
    StoreError,
    UpstashQuotaStore,
)

logger = logging.getLogger("chat")

UNCONFIGURED_DECISION = QuotaDecision(allowed=True, limit=100, remaining=99, reset=0)
STORE_ERROR_DECISION = QuotaDecision(allowed=True, limit=10, remaining=10, reset=0)


class QuotaExceeded(Exception):
    """Raised when a client identifier has used up its window."""

    def __init__(self, identifier: str, decision: QuotaDecision) -> None:
        self.identifier = identifier
        self.decision = decision
        self.detail = "Quota exceeded for {} ({} requests per window).".format(
            identifier, decision.limit
        )
        super().__init__(self.detail)


class RateLimiter:
    """Per-identifier quota gate with fail-open degradation."""

    def __init__(
        self, store: Optional[QuotaStore] = None, timeout: Optional[float] = None
    ) -> None:
        self.store = store
        self.timeout = timeout
        self._warned_unconfigured = False

    async def check(self, identifier: str) -> QuotaDecision:
        """Consume one unit of quota and return the decision.

        Never raises for store problems: those degrade to an allow decision.
        """
        if self.store is None:
            if not self._warned_unconfigured:
                logger.warning(
                    "Rate limiting disabled: quota store URL or token not configured"
                )
                self._warned_unconfigured = True
            return UNCONFIGURED_DECISION

        try:
            return await asyncio.wait_for(
                self.store.try_acquire(identifier), timeout=self.timeout
            )
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.error(
                "Rate limit store failure, failing open: %s",
                str(exc) or type(exc).__name__,
            )
            return STORE_ERROR_DECISION

    async def enforce(self, identifier: str) -> QuotaDecision:
        """Check the quota once and raise if the identifier is over it.

        Raises:
            QuotaExceeded: If the decision denies the request.
        """
        decision = await self.check(identifier)
        if not decision.allowed:
            raise QuotaExceeded(identifier, decision)
        return decision


def build_limiter(config: AppConfig) -> RateLimiter:
    """Build the limiter for the configured backend.

    The ``"upstash"`` backend needs both its URL and token to resolve from
    the environment; without them the limiter has no store and fails open.
    The ``"memory"`` backend always gets an in-process store.
    """
    rl = config.rate_limit
    store: Optional[QuotaStore] = None

    if rl.backend == "upstash" and rl.url and rl.token:
        store = UpstashQuotaStore(
            url=rl.url,
            token=rl.token,
            limit=rl.requests,
            window_seconds=rl.window_seconds,
            prefix=rl.prefix,
            timeout=rl.timeout_seconds,
        )
    elif rl.backend == "memory":
        store = InMemoryQuotaStore(limit=rl.requests, window_seconds=rl.window_seconds)

    return RateLimiter(store=store, timeout=rl.timeout_seconds)
