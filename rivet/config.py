"""Runtime settings read from ``RIVET_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_BODY_LIMIT = 1024 * 1024

_TRUE = {"1", "true", "on", "yes"}
_FALSE = {"0", "false", "off", "no"}


def _parse_bool(name: str, raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (true/false)")


def _parse_environment(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value in {"production", "prod"}:
        return "production"
    if value in {"", "development", "dev"}:
        return "development"
    return value


@dataclass(frozen=True)
class Settings:
    """Pipeline settings.

    ``environment`` decides whether server-fault details reach clients:
    anything other than ``production`` shows them.
    """

    environment: str = "development"
    body_limit: int | None = DEFAULT_BODY_LIMIT
    request_timeout: float | None = None
    trust_proxy: bool = True
    log_level: str | None = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def show_error_details(self) -> bool:
        return not self.is_production

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.environment == "development" else "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from *environ* (defaults to ``os.environ``)."""

        env = os.environ if environ is None else environ
        environment = _parse_environment(env.get("RIVET_ENV"))

        body_limit: int | None = DEFAULT_BODY_LIMIT
        raw_limit = env.get("RIVET_BODY_LIMIT")
        if raw_limit:
            try:
                body_limit = int(raw_limit)
            except ValueError as exc:
                raise ValueError(
                    "RIVET_BODY_LIMIT must be a non-negative integer"
                ) from exc
            if body_limit < 0:
                raise ValueError("RIVET_BODY_LIMIT must be a non-negative integer")
            if body_limit == 0:
                body_limit = None

        timeout: float | None = None
        raw_timeout = env.get("RIVET_REQUEST_TIMEOUT")
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError as exc:
                raise ValueError(
                    "RIVET_REQUEST_TIMEOUT must be a positive number"
                ) from exc
            if timeout <= 0:
                raise ValueError("RIVET_REQUEST_TIMEOUT must be a positive number")

        trust_proxy = True
        raw_trust = env.get("RIVET_TRUST_PROXY")
        if raw_trust:
            trust_proxy = _parse_bool("RIVET_TRUST_PROXY", raw_trust)

        log_level = env.get("RIVET_LOG_LEVEL") or None
        if log_level is not None:
            level_name = log_level.strip().upper()
            if not isinstance(logging.getLevelName(level_name), int):
                raise ValueError(f"RIVET_LOG_LEVEL has unknown level {log_level!r}")
            log_level = level_name

        return cls(
            environment=environment,
            body_limit=body_limit,
            request_timeout=timeout,
            trust_proxy=trust_proxy,
            log_level=log_level,
        )


def configure_logging(settings: Settings) -> logging.Logger:
    """Attach a stream handler to the ``rivet`` logger once."""

    logger = logging.getLogger("rivet")
    logger.setLevel(settings.effective_log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logger.addHandler(handler)
    return logger


__all__ = ["DEFAULT_BODY_LIMIT", "Settings", "configure_logging"]
