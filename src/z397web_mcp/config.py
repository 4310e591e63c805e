"""Converter connection settings, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .transport.tcp_connection import DEFAULT_PORT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

ENV_HOST = "Z397_HOST"
ENV_PORT = "Z397_PORT"
ENV_KEY = "Z397_KEY"
ENV_TIMEOUT = "Z397_TIMEOUT"
ENV_LOG_LEVEL = "Z397_LOG_LEVEL"


@dataclass
class ConverterConfig:
    """Where the converter lives and how long to wait for it."""

    host: str = ""
    port: int = DEFAULT_PORT
    key: str = ""
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ConverterConfig:
        """Build a config from ``Z397_*`` environment variables.

        Raises:
            ValueError: If ``Z397_PORT`` or ``Z397_TIMEOUT`` is not a number.
        """
        env = os.environ if environ is None else environ
        config = cls(
            host=env.get(ENV_HOST, ""),
            port=int(env.get(ENV_PORT, DEFAULT_PORT)),
            key=env.get(ENV_KEY, ""),
            timeout=float(env.get(ENV_TIMEOUT, DEFAULT_TIMEOUT)),
        )
        logger.debug("Loaded config for %s:%d", config.host or "(unset)", config.port)
        return config

    def merged(
        self,
        host: str | None = None,
        port: int | None = None,
        key: str | None = None,
        timeout: float | None = None,
    ) -> ConverterConfig:
        """Return a copy with the given non-None values overriding this one."""
        return ConverterConfig(
            host=host or self.host,
            port=port or self.port,
            key=key if key is not None else self.key,
            timeout=timeout or self.timeout,
        )


def log_level(environ: dict[str, str] | None = None) -> int:
    """Logging level from ``Z397_LOG_LEVEL`` (name or number), default INFO."""
    env = os.environ if environ is None else environ
    value = env.get(ENV_LOG_LEVEL, "INFO").strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else logging.INFO
