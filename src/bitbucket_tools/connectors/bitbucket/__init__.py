"""Bitbucket Cloud integration package.

Provides the async httpx transport for the Bitbucket REST API 2.0 and the
listing operations built on the shared paginator.
"""

from .client import BitbucketClient, BitbucketClientError
from .listings import BitbucketListings, BitbucketToolError, InvalidParamsError

__all__ = [
    "BitbucketClient",
    "BitbucketClientError",
    "BitbucketListings",
    "BitbucketToolError",
    "InvalidParamsError",
]
