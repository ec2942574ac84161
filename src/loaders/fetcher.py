"""HTTP client used by the portable loader and the npm registry client."""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiohttp

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from resolution.errors import FetchError, GraphError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


@dataclass
class FetchResponse:
    """A fully read HTTP response."""

    url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    redirect_chain: List[str] = field(default_factory=list)

    @property
    def location(self) -> Optional[str]:
        """Absolute redirect target, if this is a redirect response."""
        if self.status not in REDIRECT_STATUSES:
            return None
        location = self.headers.get("location")
        if not location:
            return None
        return urllib.parse.urljoin(self.url, location)

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")


class RemoteFetcher:
    """Client for GET requests against module hosts and registries."""

    def __init__(
        self,
        timeout: int = Constants.REQUEST_TIMEOUT,
        max_redirects: int = Constants.MAX_REDIRECTS,
        max_bytes: int = Constants.MAX_RESPONSE_BYTES,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds.
            max_redirects: Redirect hops followed by ``fetch_following``.
            max_bytes: Largest accepted response body.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_redirects = max_redirects
        self._max_bytes = max_bytes
        self._session: Optional[aiohttp.ClientSession] = None
        self.request_count = 0

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_once(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """GET ``url`` without following redirects.

        Raises:
            GraphError: transport failure, timeout or oversized body.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None
        safe_target = safe_url(url)
        self.request_count += 1

        with Timer() as t:
            try:
                async with self._session.get(
                    url, headers=headers, allow_redirects=False
                ) as response:
                    body = b""
                    if response.status not in REDIRECT_STATUSES:
                        body = await response.content.read(self._max_bytes + 1)
                        if len(body) > self._max_bytes:
                            raise GraphError(
                                f"Response from {safe_target} exceeds {self._max_bytes} bytes",
                                specifier=url,
                            )
                    result = FetchResponse(
                        url=url,
                        status=response.status,
                        headers={k.lower(): v for k, v in response.headers.items()},
                        body=body,
                    )
            except aiohttp.ClientError as exc:
                logger.warning("Fetch of %s failed: %s", safe_target, exc)
                raise FetchError(f"Import '{url}' failed: {exc}", specifier=url) from exc
            except asyncio.TimeoutError as exc:
                raise FetchError(f"Import '{url}' timed out", specifier=url) from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="fetcher",
                    action="GET",
                    status_code=result.status,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                )
            )
        return result

    async def fetch_following(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> FetchResponse:
        """GET ``url`` following redirects, recording every hop.

        Raises:
            GraphError: a redirect leaves http(s), there are too many hops,
                or the transport fails.
        """
        chain: List[str] = []
        current_url = url
        for _ in range(self._max_redirects + 1):
            response = await self.fetch_once(current_url, headers)
            next_url = response.location
            if next_url is None:
                response.redirect_chain = chain
                return response
            if not self.is_allowed_redirect(next_url):
                raise GraphError(f"Redirect to '{next_url}' is not allowed", specifier=url)
            chain.append(current_url)
            current_url = next_url
        raise GraphError(f"Too many redirects. Last one: {current_url}", specifier=url)

    @staticmethod
    def is_allowed_redirect(target_url: str) -> bool:
        """Module redirects may only point at http(s) URLs with a host."""
        target = urllib.parse.urlparse(target_url)
        return target.scheme in ("http", "https") and bool(target.hostname)

    async def __aenter__(self) -> "RemoteFetcher":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
