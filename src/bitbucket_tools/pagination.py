"""Bounded pagination traversal for Bitbucket listing endpoints.

Turns a cursor-paginated, link-following listing API into one size-bounded
result. Every listing-style operation goes through
``BitbucketPaginator.fetch_values``.

Three caller intents are reconciled:
- ``page`` set: fetch exactly that page (``all`` is ignored)
- neither set: fetch the resource's first page
- ``all`` set: follow ``next`` links until exhaustion or the item cap

Bitbucket paged responses look like::

    {"pagelen": 10, "page": 1, "size": 42, "values": [...],
     "next": "https://api.bitbucket.org/2.0/...?page=2", "previous": null}

``next`` links are replayed verbatim; they may encode cursors that cannot be
rebuilt from a page number.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, Optional, Protocol, TypeVar

from . import metrics

logger = logging.getLogger("bitbucket_tools.pagination")

__all__ = [
    "BITBUCKET_ALL_ITEMS_CAP",
    "BITBUCKET_DEFAULT_PAGELEN",
    "BITBUCKET_MAX_PAGELEN",
    "BitbucketPaginator",
    "PaginationError",
    "PaginationPolicy",
    "PaginationRequest",
    "PaginationResult",
    "Transport",
    "TransportResponse",
    "normalize_page",
    "normalize_pagelen",
    "resolve_pagelen",
]

BITBUCKET_DEFAULT_PAGELEN = 10
BITBUCKET_MAX_PAGELEN = 100
BITBUCKET_ALL_ITEMS_CAP = 1000

T = TypeVar("T")


@dataclass(frozen=True)
class PaginationPolicy:
    """Process-wide pagination limits, injected into the paginator."""

    default_pagelen: int = BITBUCKET_DEFAULT_PAGELEN
    max_pagelen: int = BITBUCKET_MAX_PAGELEN
    all_items_cap: int = BITBUCKET_ALL_ITEMS_CAP

    def __post_init__(self) -> None:
        if self.max_pagelen < 1:
            raise ValueError(f"max_pagelen must be >= 1, got {self.max_pagelen}")
        if not 1 <= self.default_pagelen <= self.max_pagelen:
            raise ValueError(
                f"default_pagelen must be in [1, {self.max_pagelen}], "
                f"got {self.default_pagelen}"
            )
        if self.all_items_cap < 1:
            raise ValueError(f"all_items_cap must be >= 1, got {self.all_items_cap}")


@dataclass
class PaginationRequest:
    """Caller intent for one listing call.

    Attributes:
        pagelen: Requested page size (invalid values fall back to the default)
        page: Explicit 1-based page number; wins over ``all``
        all: Follow ``next`` links until exhaustion or the item cap
        params: Extra query parameters forwarded unchanged on every page request
        description: Label for logs and error messages only
    """

    pagelen: Any = None
    page: Any = None
    all: Optional[bool] = None
    params: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass
class PaginationResult(Generic[T]):
    """Aggregate outcome of one traversal."""

    values: list[T]
    page: int
    pagelen: int
    next: Optional[str] = None
    previous: Optional[str] = None
    fetched_pages: int = 0

    @property
    def total_fetched(self) -> int:
        return len(self.values)

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON shape returned to tool callers."""
        return {
            "values": self.values,
            "page": self.page,
            "pagelen": self.pagelen,
            "next": self.next,
            "previous": self.previous,
            "fetchedPages": self.fetched_pages,
            "totalFetched": self.total_fetched,
        }


@dataclass
class TransportResponse:
    """One page as returned by the transport: parsed body plus hyperlinks."""

    body: Any
    links: dict[str, Optional[str]] = field(default_factory=dict)


class Transport(Protocol):
    """Performs one GET against a relative path or absolute continuation URL."""

    async def get(
        self, url: str, params: Optional[Mapping[str, Any]] = None
    ) -> TransportResponse: ...


class PaginationError(Exception):
    """Raised when any page fetch fails; the traversal is abandoned.

    Attributes:
        description: Caller label of the listing that failed
        page_index: Page being fetched (the requested page number in explicit
            page mode, otherwise the 1-based index within the traversal)
        url: Path or continuation URL that was being requested
    """

    def __init__(self, description: str, page_index: int, url: str, cause: Exception):
        self.description = description
        self.page_index = page_index
        self.url = url
        label = description or "listing"
        super().__init__(f"{label} failed while fetching page {page_index}: {cause}")


def _as_int(value: Any) -> Optional[int]:
    """Coerce agent-supplied numbers; None for anything non-numeric or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return math.floor(value)
    if isinstance(value, str):
        try:
            return _as_int(float(value.strip()))
        except ValueError:
            return None
    return None


def normalize_pagelen(value: Any, policy: PaginationPolicy) -> int:
    """Resolve the effective page size.

    Values inside ``[1, max_pagelen]`` are used as-is; zero, negative,
    oversized, non-finite and non-numeric values fall back to the default.
    """
    requested = _as_int(value)
    if requested is None or not 1 <= requested <= policy.max_pagelen:
        return policy.default_pagelen
    return requested


def normalize_page(value: Any) -> Optional[int]:
    """Return a positive page number, or None when absent or invalid."""
    page = _as_int(value)
    if page is None or page < 1:
        return None
    return page


def resolve_pagelen(pagelen: Any = None, limit: Any = None) -> Any:
    """Resolve the deprecated ``limit`` alias; an explicit ``pagelen`` wins."""
    return pagelen if pagelen is not None else limit


class BitbucketPaginator:
    """Drives one or more transport calls per listing request.

    Holds no per-traversal state: the accumulator and counters live inside
    ``fetch_values``, so concurrent traversals on one instance are independent.

    Example:
        >>> paginator = BitbucketPaginator(client)
        >>> result = await paginator.fetch_values(
        ...     "/repositories/acme/widgets/pullrequests",
        ...     PaginationRequest(all=True, params={"state": "OPEN"}),
        ... )
        >>> len(result.values) <= BITBUCKET_ALL_ITEMS_CAP
        True
    """

    def __init__(
        self, transport: Transport, policy: Optional[PaginationPolicy] = None
    ) -> None:
        self.transport = transport
        self.policy = policy or PaginationPolicy()

    async def fetch_values(
        self, path: str, request: Optional[PaginationRequest] = None
    ) -> PaginationResult[Any]:
        """Fetch a listing according to the caller's pagination intent.

        Args:
            path: Listing endpoint, relative to the API base URL
            request: Pagination intent (defaults to a single first page)

        Returns:
            PaginationResult with items in upstream order

        Raises:
            PaginationError: If any page fetch fails. No partial result is returned.
        """
        request = request or PaginationRequest()
        pagelen = normalize_pagelen(request.pagelen, self.policy)
        page = normalize_page(request.page)

        params: dict[str, Any] = dict(request.params or {})
        params["pagelen"] = pagelen
        if page is not None:
            params["page"] = page
            mode = "page"
        elif request.all:
            mode = "all"
        else:
            mode = "single"

        try:
            if mode == "all":
                result = await self._fetch_all(
                    path, params, dict(request.params or {}), pagelen, request.description
                )
            else:
                result = await self._fetch_one(
                    path, params, pagelen, page or 1, request.description
                )
        except PaginationError:
            metrics.pagination_traversals_total.labels(mode=mode, status="failed").inc()
            raise

        metrics.pagination_pages_fetched_total.labels(mode=mode).inc(result.fetched_pages)
        status = "success"
        if mode == "all" and len(result.values) >= self.policy.all_items_cap:
            status = "capped"
        metrics.pagination_traversals_total.labels(mode=mode, status=status).inc()
        return result

    async def _fetch_one(
        self,
        path: str,
        params: dict[str, Any],
        pagelen: int,
        page: int,
        description: str,
    ) -> PaginationResult[Any]:
        response = await self._get_page(path, params, page, description)
        values = _page_values(response.body)
        return PaginationResult(
            values=values,
            page=_page_number(response.body, page),
            pagelen=pagelen,
            next=response.links.get("next"),
            previous=response.links.get("previous"),
            fetched_pages=1,
        )

    async def _fetch_all(
        self,
        path: str,
        params: dict[str, Any],
        extra_params: dict[str, Any],
        pagelen: int,
        description: str,
    ) -> PaginationResult[Any]:
        cap = self.policy.all_items_cap
        values: list[Any] = []
        fetched_pages = 0
        url = path
        request_params = params

        while True:
            response = await self._get_page(
                url, request_params, fetched_pages + 1, description
            )
            fetched_pages += 1
            page_values = _page_values(response.body)
            values.extend(page_values)
            next_url = response.links.get("next")

            if len(values) >= cap:
                dropped = len(values) - cap
                del values[cap:]
                if dropped:
                    metrics.pagination_items_truncated_total.inc(dropped)
                logger.info(
                    "pagination_cap_reached",
                    extra={
                        "description": description,
                        "fetched_pages": fetched_pages,
                        "cap": cap,
                        "dropped": dropped,
                    },
                )
                break
            if not next_url or (fetched_pages == 1 and not page_values):
                break

            # The link carries pagelen and page; filters are merged back in
            url = next_url
            request_params = dict(extra_params)
            logger.debug(
                "pagination_follow_next",
                extra={
                    "description": description,
                    "page_index": fetched_pages + 1,
                    "total_so_far": len(values),
                },
            )

        return PaginationResult(
            values=values,
            page=_page_number(response.body, fetched_pages),
            pagelen=pagelen,
            next=next_url,
            previous=response.links.get("previous"),
            fetched_pages=fetched_pages,
        )

    async def _get_page(
        self,
        url: str,
        params: Optional[dict[str, Any]],
        page_index: int,
        description: str,
    ) -> TransportResponse:
        try:
            return await self.transport.get(url, params)
        except Exception as e:
            logger.error(
                "pagination_page_failed",
                extra={
                    "description": description,
                    "page_index": page_index,
                    "url": url,
                    "error": str(e),
                },
            )
            raise PaginationError(description, page_index, url, e) from e


def _page_values(body: Any) -> list[Any]:
    if isinstance(body, dict) and isinstance(body.get("values"), list):
        return list(body["values"])
    return []


def _page_number(body: Any, fallback: int) -> int:
    if isinstance(body, dict):
        page = normalize_page(body.get("page"))
        if page is not None:
            return page
    return fallback
