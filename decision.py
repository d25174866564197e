from enum import Enum
from typing import Dict

from pydantic import BaseModel


class Decision(str, Enum):
    ALLOW = "ALLOW"
    BLOCK = "BLOCK"


class RateLimitDecision(BaseModel):
    decision: Decision
    limit: int
    remaining: int
    reset_seconds: int
    window_seconds: int

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def headers(self) -> Dict[str, str]:
        """
        Standard rate-limit headers (no legacy X-RateLimit-*).
        """
        headers = {
            "RateLimit-Policy": f"{self.limit};w={self.window_seconds}",
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_seconds)
        return headers


def make_decision(
    *,
    hits: int,
    limit: int,
    reset_seconds: int,
    window_seconds: int,
) -> RateLimitDecision:
    """
    Hard cutoff: the request that pushes the count past the limit is blocked.
    """
    return RateLimitDecision(
        decision=Decision.ALLOW if hits <= limit else Decision.BLOCK,
        limit=limit,
        remaining=max(limit - hits, 0),
        reset_seconds=max(reset_seconds, 0),
        window_seconds=window_seconds,
    )
