"""Logging helpers for gpon_monitor

``LOG_LEVEL`` sets the root level. ``MONITOR_LOG_LEVEL`` overrides it for the
``gpon_monitor`` loggers only, so poll cycles can be traced at DEBUG while
library output stays at the root level.
"""
import logging
import os

PACKAGE_LOGGER = "gpon_monitor"

_NOISY_LOGGERS = ("httpx", "httpcore", "telegram")


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    value = getattr(logging, name.strip().upper(), None)
    return value if isinstance(value, int) else default


def setup_logging() -> None:
    level = _level(os.environ.get("LOG_LEVEL"), logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(handler)
    root.setLevel(level)

    package_level = _level(os.environ.get("MONITOR_LOG_LEVEL"), level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(package_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, level))


__all__ = ["PACKAGE_LOGGER", "setup_logging"]
