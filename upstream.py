import logging
from typing import Any, Optional

import httpx

from config import settings
from errors import EdgeError, ErrorKind

logger = logging.getLogger("edge.upstream")


async def fetch_json(url: str, *, client: Optional[httpx.AsyncClient] = None) -> Any:
    """
    Single best-effort GET. No timeout, no retry.

    Network errors, non-2xx statuses and unparseable bodies all surface
    as one UPSTREAM_FAILURE.
    """
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=None)

    try:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.json()

    except httpx.HTTPStatusError as e:
        raise EdgeError(
            ErrorKind.UPSTREAM_FAILURE,
            f"Upstream returned {e.response.status_code} for {url}",
        ) from e
    except httpx.RequestError as e:
        raise EdgeError(
            ErrorKind.UPSTREAM_FAILURE,
            f"Upstream service unreachable: {str(e)}",
        ) from e
    except ValueError as e:
        raise EdgeError(
            ErrorKind.UPSTREAM_FAILURE,
            f"Upstream sent invalid JSON: {str(e)}",
        ) from e
    finally:
        if owns_client:
            await client.aclose()


async def fetch_joke(*, client: Optional[httpx.AsyncClient] = None) -> Any:
    return await fetch_json(settings.JOKE_API_URL, client=client)
