"""Tests for logging setup and secret redaction."""

import logging

import pytest

from tasksync.utils.logging_config import (
    ColoredFormatter,
    configure_third_party_loggers,
    redact,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Put the root logger back the way it was."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestRedact:
    """Test masking of credentials in log text."""

    def test_api_key_in_url(self):
        """Test the key query parameter is masked."""
        text = "Max retries exceeded with url: /v1/token?key=AIzaSecret&x=1"

        assert redact(text) == "Max retries exceeded with url: /v1/token?key=***&x=1"

    def test_tokens(self):
        """Test bearer, JSON and form-encoded tokens are masked."""
        assert redact("Authorization: Bearer eyJhbGci.abc") == (
            "Authorization: Bearer ***"
        )
        assert redact('{"refreshToken": "r-123", "uid": "u"}') == (
            '{"refreshToken": "***", "uid": "u"}'
        )
        assert redact("grant_type=refresh_token&refresh_token=r-1") == (
            "grant_type=refresh_token&refresh_token=***"
        )
        assert redact("idToken=abc") == "idToken=***"

    def test_plain_text_untouched(self):
        """Test ordinary messages pass through."""
        message = "Applied remote snapshot: {'lists': 2} (token refresh ok)"

        assert redact(message) == message


class TestSetupLogging:
    """Test handler installation."""

    def test_file_log_is_redacted(self, tmp_path):
        """Test secrets in messages and tracebacks never reach the file."""
        log_file = tmp_path / "logs" / "tasksync.log"
        setup_logging("DEBUG", log_file=log_file, console_output=False)
        logger = logging.getLogger("tasksync.core.remote.auth")

        logger.error("Auth request failed: url=/v1/accounts?key=AIzaSecret")
        try:
            raise RuntimeError("Bearer leaked-token")
        except RuntimeError:
            logger.exception("Poll failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = log_file.read_text(encoding="utf-8")
        assert "tasksync.core.remote.auth" in text
        assert "key=***" in text
        assert "AIzaSecret" not in text
        assert "leaked-token" not in text

    def test_console_only(self):
        """Test no file handler is added without a log file."""
        setup_logging("warning")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ColoredFormatter)

    def test_colored_formatter_keeps_record_intact(self):
        """Test coloring doesn't leak into other handlers."""
        record = logging.LogRecord(
            "tasksync", logging.INFO, __file__, 10, "Synced %d lists", (3,), None
        )
        formatter = ColoredFormatter(fmt="%(levelname)s %(location)s %(message)s")

        line = formatter.format(record)

        assert "Synced 3 lists" in line
        assert "\033[32m" in line
        assert record.levelname == "INFO"

    def test_third_party_loggers_quieted(self):
        """Test HTTP client loggers are raised to WARNING."""
        configure_third_party_loggers()

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING
