"""HTTP fetching with curl_cffi (fresh session per request)"""

import random
import time
from typing import Dict, Optional, Protocol

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession
from loguru import logger

from .config import DEFAULT_FETCH_HEADERS, DEFAULT_REQUEST_TIMEOUT, MAX_HTML_BYTES
from .exceptions import (
    BlockedError,
    FetchTimeoutError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from .models import FetchResponse, SiteConfig
from .site_config import user_agent_for

# curl error code for CURLE_OPERATION_TIMEDOUT
CURL_TIMEOUT_CODE = 28


class Fetcher(Protocol):
    async def fetch(
        self,
        url: str,
        *,
        headers: Dict[str, str],
        timeout: float,
        impersonate: Optional[str] = None,
    ) -> FetchResponse:
        ...


def build_fetch_headers(
    config: SiteConfig, rng: Optional[random.Random] = None
) -> Dict[str, str]:
    """Browser-like request headers for a site"""
    headers = dict(DEFAULT_FETCH_HEADERS)
    headers["User-Agent"] = user_agent_for(config, rng)
    return headers


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored"""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def raise_for_status(response: FetchResponse) -> None:
    """Translate a non-2xx response into the matching typed error"""
    if response.ok:
        return

    status = response.status
    message = f"HTTP {status} {response.reason}".rstrip() + f" for {response.url}"

    if status in (404, 410):
        raise NotFoundError(message, status=status, url=response.url)
    if status == 429:
        raise RateLimitError(
            message,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            status=status,
            url=response.url,
        )
    if status in (401, 403, 451):
        raise BlockedError(message, status=status, url=response.url)
    if status >= 500:
        raise ServerError(message, status=status, url=response.url)
    raise InvalidResponseError(message, status=status, url=response.url)


class CurlFetcher:
    """
    Fetch pages with curl_cffi.

    A fresh AsyncSession per request keeps TLS/cookie state from leaking
    between sites. `impersonate` selects a browser TLS fingerprint.
    """

    def __init__(self, max_bytes: int = MAX_HTML_BYTES):
        self.max_bytes = max_bytes

    async def fetch(
        self,
        url: str,
        *,
        headers: Dict[str, str],
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        impersonate: Optional[str] = None,
    ) -> FetchResponse:
        logger.debug(f"🔍 GET {url} (impersonate: {impersonate or 'none'}, timeout: {timeout:.0f}s)")
        start_time = time.time()

        async with AsyncSession(impersonate=impersonate) as session:
            try:
                response = await session.get(
                    url,
                    headers=headers,
                    timeout=timeout,
                    allow_redirects=True,
                )
            except CurlError as e:
                if getattr(e, "code", None) == CURL_TIMEOUT_CODE:
                    raise FetchTimeoutError(f"Request to {url} timed out: {e}", url=url) from e
                raise NetworkError(f"Network error fetching {url}: {e}", url=url) from e

        content = response.content or b""
        if len(content) > self.max_bytes:
            logger.debug(f"   Truncating {len(content)} byte body to {self.max_bytes}")
            text = content[: self.max_bytes].decode("utf-8", errors="replace")
        else:
            text = response.text

        request_duration = time.time() - start_time
        logger.debug(f"   ← Response {response.status_code} ({request_duration:.2f}s)")

        return FetchResponse(
            url=str(response.url or url),
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            text=text,
            reason=response.reason or "",
        )
