"""Tests for settings and logging configuration."""

import logging

from gearpatch.config import DEFAULT_ALLOWED_HOSTS, RunLogger, Settings, get_settings, run_logger
from gearpatch.models import LoggingOptions


class TestSettings:
    def test_defaults(self):
        settings = get_settings()
        assert settings.allowed_hosts() == DEFAULT_ALLOWED_HOSTS
        assert settings.patch_http_timeout_ms == 30000

    def test_reads_environment_each_time(self, monkeypatch):
        monkeypatch.setenv("PATCH_ALLOWED_HOSTS", "a.example, b.example ,")
        assert get_settings().allowed_hosts() == ["a.example", "b.example"]
        monkeypatch.setenv("PATCH_ALLOWED_HOSTS", "c.example")
        assert get_settings().allowed_hosts() == ["c.example"]

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("PATCH_HTTP_TIMEOUT_MS", "1500")
        assert get_settings().patch_http_timeout_ms == 1500

    def test_explicit_values(self):
        assert Settings(patch_allowed_hosts="x.example").allowed_hosts() == ["x.example"]


class TestRunLogger:
    def test_maps_warn_to_warning(self):
        logger = logging.getLogger("gearpatch.test.options")
        log = run_logger(logger, LoggingOptions(level="warn", redact=True))
        assert log.min_level == logging.WARNING
        assert log.redact is True

    def test_shared_logger_level_untouched(self):
        logger = logging.getLogger("gearpatch.test.shared")
        logger.setLevel(logging.DEBUG)
        quiet = run_logger(logger, LoggingOptions(level="error"))
        verbose = run_logger(logger, LoggingOptions(level="debug"))

        assert logger.level == logging.DEBUG
        assert not quiet.isEnabledFor(logging.INFO)
        assert quiet.isEnabledFor(logging.ERROR)
        assert verbose.isEnabledFor(logging.DEBUG)

    def test_filters_records_below_level(self, caplog):
        logger = logging.getLogger("gearpatch.test.filtered")
        log = run_logger(logger, LoggingOptions(level="warn"))
        with caplog.at_level(logging.DEBUG, logger="gearpatch.test.filtered"):
            log.info("hidden")
            log.warning("shown")
        assert [r.getMessage() for r in caplog.records] == ["shown"]

    def test_none_means_no_restriction(self):
        logger = logging.getLogger("gearpatch.test.untouched")
        logger.setLevel(logging.INFO)
        log = run_logger(logger, None)
        assert isinstance(log, RunLogger)
        assert log.redact is False
        assert log.isEnabledFor(logging.INFO)
        assert logger.level == logging.INFO
