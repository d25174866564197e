from typing import Optional

import redis.asyncio as redis
from config import settings


def build_redis_client(url: Optional[str] = None) -> Optional[redis.Redis]:
    """
    Shared Redis connection for rate limit counters.
    Returns None when no REDIS_URL is configured.
    """
    url = url or settings.REDIS_URL
    if not url:
        return None

    if url.startswith("rediss://"):
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            ssl_cert_reqs=None,  # REQUIRED for Upstash
        )

    return redis.Redis.from_url(url, decode_responses=True)
