"""Bitbucket Cloud REST API client.

Provides async httpx-based client for Bitbucket Cloud API 2.0 with Bearer
token or Basic (app password) auth. Implements the paginator's Transport
interface: one GET per call, returning the parsed body plus the ``next`` /
``previous`` continuation links Bitbucket embeds in paged bodies.

Retries with exponential backoff live here, never in the paginator.

Reference: https://developer.atlassian.com/cloud/bitbucket/rest/intro/#pagination
"""

import asyncio
import logging
import random
import time
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import httpx

from ... import metrics
from ...pagination import TransportResponse

logger = logging.getLogger("bitbucket_tools.bitbucket.client")


class BitbucketClientError(Exception):
    """Raised when a Bitbucket API request fails.

    Wraps httpx errors and HTTP errors for consistent error handling.

    Attributes:
        status_code: HTTP status code, or None for network/decoding failures
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BitbucketClient:
    """Bitbucket REST API client using httpx.

    Uses long-lived httpx.AsyncClient with connection pooling.

    Attributes:
        base_url: Bitbucket API base URL (default: https://api.bitbucket.org/2.0)

    Example:
        >>> async with BitbucketClient(base_url, token="...") as client:
        ...     page = await client.get("/repositories/acme", {"pagelen": 10})
        ...     page.links.get("next")
    """

    BASE_URL = "https://api.bitbucket.org/2.0"

    # Timeout configuration
    CONNECT_TIMEOUT = 5.0  # seconds
    READ_TIMEOUT = 30.0  # seconds
    WRITE_TIMEOUT = 5.0  # seconds
    POOL_TIMEOUT = 5.0  # seconds

    # Retry configuration
    MAX_RETRIES = 3
    BASE_BACKOFF = 2  # seconds, exponential: min(60, 2^attempt)
    MAX_BACKOFF = 60  # seconds

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize Bitbucket client.

        Args:
            base_url: API base URL (default: https://api.bitbucket.org/2.0)
            token: Bearer access token (takes precedence over Basic Auth)
            username: Username for Basic Auth
            password: App password for Basic Auth
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

        headers = {
            "Accept": "application/json",
            "User-Agent": "bitbucket-tools/1.0",
        }
        auth: Optional[httpx.BasicAuth] = None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif username and password:
            auth = httpx.BasicAuth(username, password)

        # Trailing slash so relative paths append to /2.0 instead of replacing it
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            headers=headers,
            auth=auth,
            transport=transport,
            timeout=httpx.Timeout(
                connect=self.CONNECT_TIMEOUT,
                read=self.READ_TIMEOUT,
                write=self.WRITE_TIMEOUT,
                pool=self.POOL_TIMEOUT,
            ),
        )

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "BitbucketClient":
        """Build a client from a BitbucketConfig."""
        config.require_credentials()
        return cls(
            base_url=config.url,
            token=config.token.get_secret_value() or None,
            username=config.username or None,
            password=config.password.get_secret_value() or None,
            **kwargs,
        )

    async def __aenter__(self) -> "BitbucketClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit -- close httpx client."""
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    # --- Transport interface ---

    async def get(
        self, url: str, params: Optional[Mapping[str, Any]] = None
    ) -> TransportResponse:
        """GET a relative path or an absolute continuation link.

        Args:
            url: Path relative to base_url, or an absolute ``next`` link
            params: Query parameters (None when replaying a continuation link)

        Returns:
            TransportResponse with parsed JSON body and next/previous links

        Raises:
            BitbucketClientError: On HTTP errors, network failures, or invalid JSON
        """
        target = self._resolve_url(url)
        response = await self._raw_request("GET", target, params=params)
        try:
            body = response.json()
        except ValueError as e:
            raise BitbucketClientError(
                f"Invalid JSON from Bitbucket for {url}: {e}",
                status_code=response.status_code,
            ) from e
        return TransportResponse(body=body, links=self._extract_links(body))

    def _resolve_url(self, url: str) -> str:
        """Map a path or absolute URL to something httpx can request.

        Relative paths resolve against base_url. Absolute URLs are replayed
        verbatim, but only against the configured origin so a crafted
        ``next`` link cannot redirect credentials elsewhere.
        """
        parsed = urlparse(url)
        if not parsed.scheme:
            return url.lstrip("/")
        base = urlparse(self.base_url)
        if (parsed.scheme, parsed.netloc) != (base.scheme, base.netloc):
            logger.warning(
                "bitbucket_foreign_link_rejected",
                extra={"url": url[:100]},
            )
            raise BitbucketClientError(
                f"Refusing to follow link outside {self.base_url}: {url[:100]}"
            )
        return url

    @staticmethod
    def _extract_links(body: Any) -> dict[str, Optional[str]]:
        """Pull next/previous hyperlinks from a paged body."""
        links: dict[str, Optional[str]] = {}
        if isinstance(body, dict):
            for rel in ("next", "previous"):
                value = body.get(rel)
                if isinstance(value, str) and value:
                    links[rel] = value
        return links

    # --- Core HTTP Methods ---

    async def _raw_request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retries and error handling.

        Retries 5xx, 429 and timeouts with exponential backoff and jitter.
        Other 4xx responses fail immediately.

        Args:
            method: HTTP method
            url: Relative path or absolute URL
            params: Query parameters

        Returns:
            Successful httpx.Response (2xx)

        Raises:
            BitbucketClientError: On non-retryable errors or exhausted retries
        """
        for attempt in range(self.MAX_RETRIES + 1):
            started = time.monotonic()
            try:
                response = await self._client.request(
                    method, url, params=dict(params) if params else None
                )
            except httpx.TimeoutException as e:
                metrics.request_duration_seconds.labels(status="error").observe(
                    time.monotonic() - started
                )
                if attempt < self.MAX_RETRIES:
                    backoff = min(self.MAX_BACKOFF, self.BASE_BACKOFF ** (attempt + 1))
                    metrics.request_retries_total.labels(reason="timeout").inc()
                    logger.warning(
                        "Request timeout. Retrying in %.1fs (attempt %d/%d)",
                        backoff,
                        attempt + 1,
                        self.MAX_RETRIES,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise BitbucketClientError(
                    f"Request timeout after {self.MAX_RETRIES} retries: {e}"
                ) from e
            except httpx.HTTPError as e:
                metrics.request_duration_seconds.labels(status="error").observe(
                    time.monotonic() - started
                )
                raise BitbucketClientError(f"HTTP error: {e}") from e

            metrics.request_duration_seconds.labels(
                status=str(response.status_code)
            ).observe(time.monotonic() - started)

            # Rate limited -- honor Retry-After
            if response.status_code == 429:
                retry_after = self._retry_after(response)
                if attempt < self.MAX_RETRIES:
                    metrics.request_retries_total.labels(reason="rate_limited").inc()
                    logger.warning(
                        "Rate limited. Retry-After: %ds (attempt %d/%d)",
                        retry_after,
                        attempt + 1,
                        self.MAX_RETRIES,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise BitbucketClientError(
                    f"Bitbucket rate limit exceeded after {self.MAX_RETRIES} retries",
                    status_code=429,
                )

            # Server errors (retryable)
            if response.status_code >= 500:
                if attempt < self.MAX_RETRIES:
                    backoff = min(
                        self.MAX_BACKOFF,
                        self.BASE_BACKOFF ** (attempt + 1),
                    ) + random.uniform(0, 1)  # jitter
                    metrics.request_retries_total.labels(reason="server_error").inc()
                    logger.warning(
                        "Server error %d. Retrying in %.1fs (attempt %d/%d)",
                        response.status_code,
                        backoff,
                        attempt + 1,
                        self.MAX_RETRIES,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise BitbucketClientError(
                    f"Bitbucket API server error {response.status_code} after "
                    f"{self.MAX_RETRIES} retries",
                    status_code=response.status_code,
                )

            # Client errors (non-retryable)
            if response.status_code >= 400:
                raise BitbucketClientError(
                    f"Bitbucket API error {response.status_code}: "
                    f"{self._error_message(response)}",
                    status_code=response.status_code,
                )

            return response

        # Loop always returns or raises; kept for type checkers
        raise BitbucketClientError("Request failed after all retries")

    def _retry_after(self, response: httpx.Response) -> int:
        raw = response.headers.get("Retry-After", "")
        try:
            return min(self.MAX_BACKOFF, max(1, int(raw)))
        except ValueError:
            return self.BASE_BACKOFF

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract Bitbucket's error.message, falling back to the raw text."""
        try:
            error_body = response.json() if response.content else {}
        except (ValueError, UnicodeDecodeError):
            error_body = {}
        if isinstance(error_body, dict):
            error = error_body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return response.text
