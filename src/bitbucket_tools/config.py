"""Configuration management with pydantic-settings for bitbucket-tools.

- Type-safe configuration loaded from BITBUCKET_* environment variables
- Automatic .env file loading with proper precedence
- SecretStr for credentials
- Frozen config (thread-safe, immutable after load)

Base URL normalization accepts the URLs users actually paste:
``https://bitbucket.org/<workspace>`` (web UI) becomes the public API base
and contributes a default workspace; ``https://api.bitbucket.org`` gets its
``/2.0`` suffix.
"""

import logging
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .pagination import (
    BITBUCKET_ALL_ITEMS_CAP,
    BITBUCKET_DEFAULT_PAGELEN,
    BITBUCKET_MAX_PAGELEN,
    PaginationPolicy,
)

logger = logging.getLogger("bitbucket_tools.config")

__all__ = [
    "BITBUCKET_API_BASE_URL",
    "BitbucketConfig",
    "get_config",
    "normalize_base_url",
    "reset_config",
]

BITBUCKET_API_BASE_URL = "https://api.bitbucket.org/2.0"


def normalize_base_url(
    base_url: str, workspace: str | None = None
) -> tuple[str, str | None]:
    """Normalize a user-supplied Bitbucket URL.

    Args:
        base_url: URL from BITBUCKET_URL (web URL, API URL, or self-hosted)
        workspace: Explicitly configured default workspace, if any

    Returns:
        Tuple of (api_base_url, default_workspace). An explicit workspace is
        never overridden by one parsed from a web URL.
    """
    parsed = urlparse(base_url)
    if not parsed.scheme or not parsed.netloc:
        # Not an absolute URL; keep as-is for custom/self-hosted setups
        return base_url, workspace

    host = (parsed.hostname or "").lower()
    normalized = base_url

    if host in ("bitbucket.org", "www.bitbucket.org"):
        segments = [s for s in parsed.path.split("/") if s]
        if not workspace and segments:
            workspace = segments[0]
        normalized = BITBUCKET_API_BASE_URL

    if host == "api.bitbucket.org":
        normalized = BITBUCKET_API_BASE_URL

    return normalized.rstrip("/"), workspace


class BitbucketConfig(BaseSettings):
    """Configuration for bitbucket-tools.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in working directory
    3. Default values (lowest priority)

    Attributes:
        url: Bitbucket API base URL (normalized on load)
        token: Bearer access token (repository/workspace access token)
        username: Username for Basic Auth (app passwords)
        password: App password for Basic Auth
        workspace: Default workspace for listings that omit one
        default_pagelen: Page size used when the caller gives none
        max_pagelen: Largest page size forwarded upstream
        all_items_cap: Hard cap on items returned by an exhaustive traversal
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json for production, text for development)
    """

    model_config = SettingsConfigDict(
        env_prefix="BITBUCKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
    )

    url: str = Field(
        default=BITBUCKET_API_BASE_URL,
        min_length=1,
        description="Bitbucket API base URL. Web URLs (https://bitbucket.org/<workspace>) are accepted.",
    )

    token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer access token (takes precedence over username/password)",
    )

    username: str = Field(default="", description="Username for Basic Auth")

    password: SecretStr = Field(
        default=SecretStr(""),
        description="App password for Basic Auth (stored securely)",
    )

    workspace: str = Field(
        default="",
        description="Default workspace used when a listing omits one",
    )

    # Pagination policy
    default_pagelen: int = Field(
        default=BITBUCKET_DEFAULT_PAGELEN,
        ge=1,
        description="Page size used when the caller supplies none or an invalid one",
    )

    max_pagelen: int = Field(
        default=BITBUCKET_MAX_PAGELEN,
        ge=1,
        le=BITBUCKET_MAX_PAGELEN,
        description="Largest accepted page size (Bitbucket Cloud caps pagelen at 100)",
    )

    all_items_cap: int = Field(
        default=BITBUCKET_ALL_ITEMS_CAP,
        ge=1,
        le=100000,
        description="Hard cap on items accumulated by an all=true traversal",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log format: json (production), text (development)",
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_url(cls, data):
        """Rewrite web/API URLs to the API base and derive the workspace."""
        if not isinstance(data, dict):
            return data
        raw_url = data.get("url")
        if not raw_url:
            return data
        normalized, workspace = normalize_base_url(
            str(raw_url), data.get("workspace") or None
        )
        if normalized != raw_url or workspace != (data.get("workspace") or None):
            logger.info(
                "bitbucket_config_normalized",
                extra={
                    "from_base_url": raw_url,
                    "to_base_url": normalized,
                    "default_workspace": workspace,
                },
            )
        data = dict(data)
        data["url"] = normalized
        if workspace:
            data["workspace"] = workspace
        return data

    @model_validator(mode="after")
    def validate_pagination_policy(self) -> "BitbucketConfig":
        """Validate default page size fits within the maximum."""
        if self.default_pagelen > self.max_pagelen:
            raise ValueError(
                f"BITBUCKET_DEFAULT_PAGELEN ({self.default_pagelen}) "
                f"must be <= BITBUCKET_MAX_PAGELEN ({self.max_pagelen})"
            )
        return self

    def require_credentials(self) -> None:
        """Raise ValueError unless a token or a username/password pair is set."""
        if self.token.get_secret_value():
            return
        if self.username and self.password.get_secret_value():
            return
        raise ValueError(
            "Either BITBUCKET_TOKEN or BITBUCKET_USERNAME/BITBUCKET_PASSWORD is required"
        )

    def pagination_policy(self) -> PaginationPolicy:
        """Build the pagination policy injected into the paginator."""
        return PaginationPolicy(
            default_pagelen=self.default_pagelen,
            max_pagelen=self.max_pagelen,
            all_items_cap=self.all_items_cap,
        )


@lru_cache(maxsize=1)
def get_config() -> BitbucketConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Returns:
        BitbucketConfig singleton instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return BitbucketConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing."""
    get_config.cache_clear()
