"""Shared pytest fixtures for bitbucket-tools tests.

Fixture Organization:
    - Environment isolation: file logging disabled, BITBUCKET_* vars cleared
    - Mock fixtures: in-memory Bitbucket transport (tests/mocks)
    - Paginator fixtures: small-cap policy so exhaustive mode is cheap to test
"""

import os
import sys
from pathlib import Path

import pytest

# Keep test runs from writing to the user's log directory; must run before
# bitbucket_tools is imported (it configures logging on import)
os.environ.setdefault("BITBUCKET_LOG_DISABLE", "1")

# Add tests directory to sys.path so tests can import from mocks/
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from mocks.bitbucket_mock import MockTransport, build_pages  # noqa: E402

from bitbucket_tools.config import reset_config  # noqa: E402
from bitbucket_tools.pagination import BitbucketPaginator, PaginationPolicy  # noqa: E402

CONFIG_ENV_VARS = [
    "BITBUCKET_URL",
    "BITBUCKET_TOKEN",
    "BITBUCKET_USERNAME",
    "BITBUCKET_PASSWORD",
    "BITBUCKET_WORKSPACE",
    "BITBUCKET_DEFAULT_PAGELEN",
    "BITBUCKET_MAX_PAGELEN",
    "BITBUCKET_ALL_ITEMS_CAP",
    "BITBUCKET_LOG_LEVEL",
    "BITBUCKET_LOG_FORMAT",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear BITBUCKET_* config vars and run from an empty dir (no stray .env)."""
    for key in CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield monkeypatch
    reset_config()


@pytest.fixture
def small_policy():
    """Policy with a tiny item cap so exhaustive-mode tests stay small."""
    return PaginationPolicy(default_pagelen=10, max_pagelen=100, all_items_cap=25)


@pytest.fixture
def make_paginator():
    """Factory: (page_counts, policy=None, **transport_kwargs) -> (paginator, transport)."""

    def _make(counts, policy=None, **kwargs):
        transport = MockTransport(build_pages(counts), **kwargs)
        return BitbucketPaginator(transport, policy), transport

    return _make
