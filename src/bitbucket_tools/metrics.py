"""
Prometheus metrics definitions for bitbucket-tools.

Defines Counter and Histogram metrics for monitoring pagination traversals
and upstream Bitbucket API requests.

Naming conventions: snake_case, bitbucket_ prefix.
"""

from prometheus_client import Counter, Histogram

# ==============================================================================
# PAGINATION
# ==============================================================================

pagination_traversals_total = Counter(
    "bitbucket_pagination_traversals_total",
    "Total pagination traversals by mode and outcome",
    ["mode", "status"],
    # mode: page, single, all
    # status: success, capped, failed
)

pagination_pages_fetched_total = Counter(
    "bitbucket_pagination_pages_fetched_total",
    "Total pages fetched by the paginator",
    ["mode"],
)

pagination_items_truncated_total = Counter(
    "bitbucket_pagination_items_truncated_total",
    "Items dropped because an exhaustive traversal hit the item cap",
)

# ==============================================================================
# HTTP TRANSPORT
# ==============================================================================

request_duration_seconds = Histogram(
    "bitbucket_request_duration_seconds",
    "Bitbucket API request latency",
    ["status"],
    # status: HTTP status code as string, or "error" for transport failures
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

request_retries_total = Counter(
    "bitbucket_request_retries_total",
    "Bitbucket API request retries by reason",
    ["reason"],
    # reason: server_error, rate_limited, timeout
)
