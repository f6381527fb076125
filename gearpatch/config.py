"""Configuration settings for the patch runtime."""

import logging
import sys
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_HOSTS = [
    "api.openai.com",
    "api.anthropic.com",
    "hooks.slack.com",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LoggingOptions levels use "warn"; stdlib logging calls it WARNING
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    - PATCH_ALLOWED_HOSTS: comma-separated egress allowlist for http nodes
    - PATCH_HTTP_TIMEOUT_MS: default per-node timeout
    - GEARPATCH_LOG_LEVEL: root log level for the inlet server
    """

    patch_allowed_hosts: Optional[str] = None
    patch_http_timeout_ms: int = 30000
    gearpatch_log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def allowed_hosts(self) -> List[str]:
        if not self.patch_allowed_hosts or not self.patch_allowed_hosts.strip():
            return list(DEFAULT_ALLOWED_HOSTS)
        return [h.strip() for h in self.patch_allowed_hosts.split(",") if h.strip()]


def get_settings() -> Settings:
    """Build settings from the current environment.

    Not cached: the allowlist is read every time a URL is validated.
    """
    return Settings()


def configure_logging(level: str | None = None) -> None:
    level = (level or get_settings().gearpatch_log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


class RunLogger(logging.LoggerAdapter):
    """Per-runner view of a module logger.

    LoggingOptions raise the threshold for this runner only; the shared
    logger's own level and handlers are left untouched, so a level below the
    process configuration has no effect.
    """

    def __init__(self, logger: logging.Logger, level: int = logging.NOTSET, redact: bool = False):
        super().__init__(logger, {})
        self.min_level = level
        self.redact = redact

    def isEnabledFor(self, level: int) -> bool:
        if level < self.min_level:
            return False
        return self.logger.isEnabledFor(level)


def run_logger(logger: logging.Logger, options=None) -> RunLogger:
    """Wrap `logger` according to LoggingOptions (None means no restriction)."""
    if options is None:
        return RunLogger(logger)
    return RunLogger(logger, LOG_LEVELS[options.level], bool(options.redact))
