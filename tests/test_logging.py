"""Unit tests for structured logging infrastructure.

Tests:
- StructuredFormatter produces valid JSON with redaction
- Log file path resolution from BITBUCKET_LOG_* variables
- configure_logging handler selection and idempotency
"""

import json
import logging
import sys
from pathlib import Path

import pytest

from bitbucket_tools.logging_config import (
    LOG_FILE_NAME,
    LOGGER_NAMESPACE,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
    is_truthy_env,
    resolve_log_file,
)

LOG_ENV_VARS = [
    "BITBUCKET_LOG_DISABLE",
    "BITBUCKET_LOG_FILE",
    "BITBUCKET_LOG_DIR",
    "BITBUCKET_LOG_PER_CWD",
    "BITBUCKET_LOG_FORMAT",
    "BITBUCKET_LOG_LEVEL",
]


@pytest.fixture
def log_env(monkeypatch):
    """Clear log-related env vars."""
    for key in LOG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def fresh_logger():
    """Detach handlers from the package logger and restore them afterwards."""
    logger = logging.getLogger(LOGGER_NAMESPACE)
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)


def _record(msg="pagination_page_failed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="bitbucket_tools.pagination",
        level=logging.ERROR,
        pathname="pagination.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Tests for JSON output."""

    def test_formatter_produces_valid_json(self):
        output = StructuredFormatter().format(_record())
        log_data = json.loads(output)
        assert log_data["level"] == "ERROR"
        assert log_data["logger"] == "bitbucket_tools.pagination"
        assert log_data["message"] == "pagination_page_failed"
        assert log_data["timestamp"].endswith("Z")

    def test_extras_in_context(self):
        output = StructuredFormatter().format(
            _record(description="getPullRequests", page_index=3)
        )
        context = json.loads(output)["context"]
        assert context == {"description": "getPullRequests", "page_index": 3}

    def test_sensitive_keys_redacted(self):
        output = StructuredFormatter().format(_record(token="bb_secret", password="pw"))
        context = json.loads(output)["context"]
        assert context["token"] == "[REDACTED]"
        assert context["password"] == "[REDACTED]"

    def test_compound_sensitive_keys_redacted(self):
        """access_token style keys are masked; author-like keys are not."""
        output = StructuredFormatter().format(
            _record(access_token="abc", author="alice", repo_slug="widgets")
        )
        context = json.loads(output)["context"]
        assert context["access_token"] == "[REDACTED]"
        assert context["author"] == "alice"
        assert context["repo_slug"] == "widgets"

    def test_nested_headers_redacted(self):
        """Credentials inside nested dicts are masked too."""
        output = StructuredFormatter().format(
            _record(headers={"Authorization": "Bearer x", "Accept": "application/json"})
        )
        headers = json.loads(output)["context"]["headers"]
        assert headers == {"Authorization": "[REDACTED]", "Accept": "application/json"}

    def test_timestamp_from_record_creation(self):
        record = _record()
        record.created = 0.0
        assert json.loads(StructuredFormatter().format(record))["timestamp"] == (
            "1970-01-01T00:00:00Z"
        )

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        log_data = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in log_data["exception"]

    def test_non_serializable_extra(self):
        """Objects without a JSON form are stringified instead of failing."""
        output = StructuredFormatter().format(_record(path=Path("/tmp/x")))
        assert json.loads(output)["context"]["path"] == "/tmp/x"


class TestTextFormatter:
    """Tests for human-readable output."""

    def test_extras_appended(self):
        line = TextFormatter().format(
            _record(description="getPullRequests", page_index=2, token="secret")
        )
        assert "pagination_page_failed" in line
        assert "description=getPullRequests" in line
        assert "page_index=2" in line
        assert "token=[REDACTED]" in line
        assert "secret" not in line.split("token=")[1]

    def test_no_extras_plain_line(self):
        line = TextFormatter().format(_record())
        assert line.endswith("bitbucket_tools.pagination: pagination_page_failed")


class TestResolveLogFile:
    """Tests for log file path resolution."""

    @pytest.mark.parametrize("value", ["1", "true", "YES", "on"])
    def test_truthy_values(self, value):
        assert is_truthy_env(value) is True

    @pytest.mark.parametrize("value", [None, "", "0", "false", "off"])
    def test_falsy_values(self, value):
        assert is_truthy_env(value) is False

    def test_disable_wins(self, log_env, tmp_path):
        log_env.setenv("BITBUCKET_LOG_DISABLE", "true")
        log_env.setenv("BITBUCKET_LOG_FILE", str(tmp_path / "x.log"))
        assert resolve_log_file() is None

    def test_explicit_file(self, log_env, tmp_path):
        log_env.setenv("BITBUCKET_LOG_FILE", str(tmp_path / "custom.log"))
        assert resolve_log_file() == tmp_path / "custom.log"

    def test_log_dir(self, log_env, tmp_path):
        log_env.setenv("BITBUCKET_LOG_DIR", str(tmp_path / "logs"))
        assert resolve_log_file() == tmp_path / "logs" / LOG_FILE_NAME
        assert (tmp_path / "logs").is_dir()

    def test_per_cwd_subdirectory(self, log_env, tmp_path):
        log_env.setenv("BITBUCKET_LOG_DIR", str(tmp_path))
        log_env.setenv("BITBUCKET_LOG_PER_CWD", "1")
        work = tmp_path / "work"
        work.mkdir()
        log_env.chdir(work)

        resolved = resolve_log_file()

        assert resolved.name == LOG_FILE_NAME
        assert resolved.parent.parent == tmp_path
        assert "/" not in resolved.parent.name

    def test_uncreatable_dir_disables_file_logging(self, log_env, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        log_env.setenv("BITBUCKET_LOG_DIR", str(blocker / "sub"))
        assert resolve_log_file() is None


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_file_handler_when_path_resolves(self, log_env, fresh_logger, tmp_path):
        log_env.setenv("BITBUCKET_LOG_FILE", str(tmp_path / "bb.log"))

        configure_logging("DEBUG")

        assert fresh_logger.level == logging.DEBUG
        assert len(fresh_logger.handlers) == 1
        assert isinstance(fresh_logger.handlers[0], logging.FileHandler)
        assert fresh_logger.propagate is False

    def test_stderr_when_disabled(self, log_env, fresh_logger):
        log_env.setenv("BITBUCKET_LOG_DISABLE", "1")

        configure_logging()

        handler = fresh_logger.handlers[0]
        assert type(handler) is logging.StreamHandler
        assert isinstance(handler.formatter, StructuredFormatter)

    def test_text_format(self, log_env, fresh_logger):
        log_env.setenv("BITBUCKET_LOG_DISABLE", "1")
        log_env.setenv("BITBUCKET_LOG_FORMAT", "text")

        configure_logging()

        assert isinstance(fresh_logger.handlers[0].formatter, TextFormatter)

    def test_idempotent(self, log_env, fresh_logger):
        log_env.setenv("BITBUCKET_LOG_DISABLE", "1")

        configure_logging()
        configure_logging()

        assert len(fresh_logger.handlers) == 1

    def test_writes_json_lines(self, log_env, fresh_logger, tmp_path):
        log_file = tmp_path / "bb.log"
        log_env.setenv("BITBUCKET_LOG_FILE", str(log_file))
        configure_logging("INFO")

        logging.getLogger("bitbucket_tools.pagination").info(
            "pagination_cap_reached", extra={"cap": 1000}
        )
        for handler in fresh_logger.handlers:
            handler.flush()

        line = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert line["message"] == "pagination_cap_reached"
        assert line["context"]["cap"] == 1000
