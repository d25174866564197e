import logging
import math
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from fastapi import Request

from config import settings
from decision import RateLimitDecision, make_decision
from errors import EdgeError, ErrorKind, error_response
from pipeline import CONTINUE, RequestContext, Respond, StageResult
from redis_client import build_redis_client

logger = logging.getLogger("edge.rate_limit")


# Expired identities are swept once the table grows past this size,
# at most once per window
SWEEP_THRESHOLD = 10_000

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


# =========================
# Counter stores
# =========================

class CounterStore(Protocol):
    async def check_and_increment(self, identity: str, window_seconds: int) -> Tuple[int, int]:
        """
        Count one hit for identity in its current fixed window.

        Returns:
            hits in the window (including this one)
            seconds until the window resets
        """
        ...


class MemoryCounterStore:
    """
    In-process fixed-window counters.

    No await happens between the read and the write, so check-and-increment
    is atomic with respect to other requests on the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._next_sweep_at = 0.0

    async def check_and_increment(self, identity: str, window_seconds: int) -> Tuple[int, int]:
        now = self._clock()

        hits, reset_at = self._windows.get(identity, (0, 0.0))
        if now >= reset_at:
            hits, reset_at = 0, now + window_seconds

        hits += 1
        self._windows[identity] = (hits, reset_at)

        if len(self._windows) > SWEEP_THRESHOLD and now >= self._next_sweep_at:
            self._sweep(now)
            self._next_sweep_at = now + window_seconds

        return hits, math.ceil(reset_at - now)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]

        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit windows")


class RedisCounterStore:
    """
    Shared counters: INCR and TTL in one pipelined round-trip,
    EXPIRE when the key has no expiry yet (first hit).
    """

    def __init__(self, client, prefix: str = "rate_limit"):
        self._client = client
        self._prefix = prefix

    def _key(self, identity: str) -> str:
        return f"{self._prefix}:{identity}"

    async def check_and_increment(self, identity: str, window_seconds: int) -> Tuple[int, int]:
        key = self._key(identity)

        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.ttl(key)
        hits, ttl = await pipe.execute()

        if ttl is None or int(ttl) < 0:
            # First hit, or the key lost its expiry
            await self._client.expire(key, window_seconds)
            ttl = window_seconds

        return int(hits), int(ttl)


def build_counter_store() -> CounterStore:
    client = build_redis_client()
    if client is None:
        logger.info("Rate limit counters: in-memory")
        return MemoryCounterStore()

    logger.info("Rate limit counters: redis")
    return RedisCounterStore(client)


# =========================
# Limiter
# =========================

class RateLimiter:
    def __init__(
        self,
        store: Optional[CounterStore] = None,
        *,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.store = store if store is not None else MemoryCounterStore()
        self.limit = limit if limit is not None else settings.RATE_LIMIT_MAX
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        )

    async def check(self, identity: str) -> RateLimitDecision:
        hits, reset_seconds = await self.store.check_and_increment(identity, self.window_seconds)

        decision = make_decision(
            hits=hits,
            limit=self.limit,
            reset_seconds=reset_seconds,
            window_seconds=self.window_seconds,
        )

        if not decision.allowed and hits == self.limit + 1:
            logger.warning(f"Rate limit reached for {identity}, resets in {reset_seconds}s")

        return decision


# =========================
# Pipeline stage
# =========================

class RateLimitStage:
    """
    Count the request against the client's address. Over the limit,
    the chain ends here with a 429.
    """

    name = "rate_limit"

    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    async def __call__(self, request: Request, ctx: RequestContext) -> StageResult:
        decision = await self.limiter.check(ctx.client_ip)
        ctx.response_headers.update(decision.headers())

        if not decision.allowed:
            return Respond(
                error_response(
                    EdgeError(ErrorKind.RATE_LIMITED, RATE_LIMIT_MESSAGE)
                )
            )

        return CONTINUE
