"""bitbucket-tools - Bitbucket Cloud listings for automated agents.

Provides:
- Bounded pagination traversal over Bitbucket's link-following listings
- Async httpx transport with retries and backoff
- Configuration management with environment overrides
- Structured JSON logging and Prometheus metrics

Python Version: 3.10+ required
"""

# Logging Configuration - configure before other imports
from .logging_config import StructuredFormatter, configure_logging

# Initialize structured logging on module import
configure_logging()

from .__version__ import __version__
from .config import BitbucketConfig, get_config, reset_config
from .connectors.bitbucket import (
    BitbucketClient,
    BitbucketClientError,
    BitbucketListings,
    BitbucketToolError,
    InvalidParamsError,
)
from .pagination import (
    BITBUCKET_ALL_ITEMS_CAP,
    BITBUCKET_DEFAULT_PAGELEN,
    BITBUCKET_MAX_PAGELEN,
    BitbucketPaginator,
    PaginationError,
    PaginationPolicy,
    PaginationRequest,
    PaginationResult,
)

# Submodule exports for test mocking compatibility
from . import metrics

__all__ = [
    "__version__",
    # Configuration
    "BitbucketConfig",
    "get_config",
    "reset_config",
    # Pagination
    "BITBUCKET_ALL_ITEMS_CAP",
    "BITBUCKET_DEFAULT_PAGELEN",
    "BITBUCKET_MAX_PAGELEN",
    "BitbucketPaginator",
    "PaginationError",
    "PaginationPolicy",
    "PaginationRequest",
    "PaginationResult",
    # Bitbucket connector
    "BitbucketClient",
    "BitbucketClientError",
    "BitbucketListings",
    "BitbucketToolError",
    "InvalidParamsError",
    # Logging
    "configure_logging",
    "StructuredFormatter",
]
