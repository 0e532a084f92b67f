"""Shared httpx plumbing for geocoding and source clients."""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx

from carefinder.core.errors import RateLimited, UpstreamError
from carefinder.core.ratelimit import TokenBucket

logger = logging.getLogger(__name__)


class HttpClientMixin:
    """Reuses an injected AsyncClient, or opens a short-lived one per call."""

    _client: Optional[httpx.AsyncClient] = None
    timeout: float = 10

    @asynccontextmanager
    async def _session(self):
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client


def acquire_or_raise(limiter: Optional[TokenBucket], source: str) -> None:
    if limiter is not None and not limiter.try_acquire():
        raise RateLimited(f"{source}: rate limit exceeded")


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    source: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Any:
    """Send a request and decode JSON, translating every failure into the error taxonomy."""
    try:
        resp = await client.request(method, url, params=params, headers=headers, data=data)
    except httpx.TimeoutException as e:
        logger.warning("%s request timed out: %s", source, e)
        raise UpstreamError(f"{source} request timed out", source=source) from e
    except httpx.HTTPError as e:
        logger.warning("%s request failed: %s", source, e)
        raise UpstreamError(f"{source} request error: {e}", source=source) from e

    raise_for_upstream(resp, source)
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError(f"{source} returned malformed JSON", source=source, status_code=resp.status_code) from e


def raise_for_upstream(resp: httpx.Response, source: str) -> None:
    if resp.status_code == 200:
        return
    logger.error("%s API HTTP error: status=%s body=%.200s", source, resp.status_code, resp.text)
    if resp.status_code == 429:
        raise RateLimited(f"{source} rate-limited: {resp.status_code}")
    raise UpstreamError(f"{source} HTTP {resp.status_code}", source=source, status_code=resp.status_code)


async def get_json(client: httpx.AsyncClient, url: str, source: str, params=None, headers=None) -> Any:
    return await request_json(client, "GET", url, source, params=params, headers=headers)
