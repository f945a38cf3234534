"""Central configuration for gpon_monitor."""

from __future__ import annotations

import logging
import os
from typing import List, Set

from .models.settings import Settings

logger = logging.getLogger(__name__)

_BOOL_TRUE = {"1", "true", "yes", "on"}


def _split_ints(s: str) -> Set[int]:
    """Parse comma-separated string into a set of integers.

    Args:
        s: Comma-separated string of integers (e.g., "123,456,789")

    Returns:
        Set of parsed integers. Invalid entries are silently skipped.

    Example:
        >>> _split_ints("123,456,invalid,789")
        {123, 456, 789}
    """
    out = set()
    for part in (s or "").split(","):
        p = part.strip()
        if p.lstrip("-").isdigit():
            out.add(int(p))
    return out


def _split_list(s: str) -> List[str]:
    """Parse comma-separated string into a list of non-empty strings.

    Example:
        >>> _split_list("noc@example.com, ops@example.com")
        ['noc@example.com', 'ops@example.com']
    """
    return [p.strip() for p in (s or "").split(",") if p.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _BOOL_TRUE


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, "") or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to sensible defaults.
        Boolean values accept: 1/true/yes/on (case-insensitive) as True.
    """
    token = os.environ.get("BOT_TOKEN") or None
    allowed = _split_ints(os.environ.get("ALLOWED_CHAT_IDS", ""))
    alert_chats = _split_ints(os.environ.get("ALERT_CHAT_IDS", "")) or set(allowed)
    rate_limit = _env_float("RATE_LIMIT_S", 1.0)

    # Router (RouterOS REST API)
    scheme = (os.environ.get("ROUTER_SCHEME") or "https").strip().lower()
    if scheme not in {"http", "https"}:
        scheme = "https"
    default_port = 443 if scheme == "https" else 80

    # Alert policy
    first_delay_min = _env_float("FIRST_ALERT_DELAY_MIN", 10.0)
    second_delay_h = _env_float("SECOND_ALERT_DELAY_H", 3.0)

    return Settings(
        BOT_TOKEN=token,
        ALLOWED_CHAT_IDS=allowed,
        ALERT_CHAT_IDS=alert_chats,
        RATE_LIMIT_S=rate_limit,
        ROUTER_HOST=os.environ.get("ROUTER_HOST") or None,
        ROUTER_PORT=_env_int("ROUTER_PORT", default_port),
        ROUTER_SCHEME=scheme,
        ROUTER_USER=os.environ.get("ROUTER_USER") or None,
        ROUTER_PASS=os.environ.get("ROUTER_PASS") or None,
        ROUTER_VERIFY_TLS=_env_bool("ROUTER_VERIFY_TLS", False),
        ROUTER_TIMEOUT_S=_env_float("ROUTER_TIMEOUT_S", 20.0),
        ROUTER_MAX_RETRIES=max(1, _env_int("ROUTER_MAX_RETRIES", 3)),
        QUEUE_PREFIX=os.environ.get("QUEUE_PREFIX") or "GPON",
        POLL_INTERVAL_S=max(1.0, _env_float("POLL_INTERVAL_S", 30.0)),
        DEFAULT_THRESHOLD_KB=_env_float("DEFAULT_THRESHOLD_KB", 0.01),
        FIRST_ALERT_DELAY_S=int(first_delay_min * 60),
        SECOND_ALERT_DELAY_S=int(second_delay_h * 3600),
        SEND_RECOVERY_NOTIFICATIONS=_env_bool("SEND_RECOVERY_NOTIFICATIONS", False),
        ENABLE_EMAIL=_env_bool("ENABLE_EMAIL", True),
        ENABLE_TELEGRAM=_env_bool("ENABLE_TELEGRAM", True),
        SMTP_HOST=os.environ.get("SMTP_HOST") or "smtp.gmail.com",
        SMTP_PORT=_env_int("SMTP_PORT", 587),
        SMTP_STARTTLS=_env_bool("SMTP_STARTTLS", True),
        EMAIL_USER=os.environ.get("EMAIL_USER") or None,
        EMAIL_PASS=os.environ.get("EMAIL_PASS") or None,
        EMAIL_TO=_split_list(os.environ.get("EMAIL_TO", "")),
        NOTIFY_TIMEOUT_S=_env_float("NOTIFY_TIMEOUT_S", 15.0),
        DB_PATH=os.environ.get("DB_PATH") or "./gpon.db",
        DATA_RETENTION_DAYS=_env_int("DATA_RETENTION_DAYS", 30),
        HISTORY_MAX_POINTS=max(2, _env_int("HISTORY_MAX_POINTS", 200)),
    )


settings = _read_settings()


def validate_settings(s: Settings | None = None) -> list[str]:
    """Validate critical configuration and log warnings for issues.

    Returns the names of required router settings that are missing so the
    entrypoint can refuse to start the poller.
    """
    s = s or settings
    missing = [
        key
        for key, value in (
            ("ROUTER_HOST", s.ROUTER_HOST),
            ("ROUTER_USER", s.ROUTER_USER),
            ("ROUTER_PASS", s.ROUTER_PASS),
        )
        if not value
    ]
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
    if s.BOT_TOKEN is None:
        logger.warning("BOT_TOKEN is not set; running without bot commands.")
    elif not s.ALLOWED_CHAT_IDS:
        logger.warning(
            "ALLOWED_CHAT_IDS is empty; guarded commands will be unauthorized."
        )
    if not (s.EMAIL_USER and s.EMAIL_PASS and s.EMAIL_TO):
        logger.warning("Email configuration missing; alerts will not be emailed.")
    if not (s.BOT_TOKEN and s.ALERT_CHAT_IDS):
        logger.warning("Telegram alert chat missing; alerts will not be sent to chat.")
    return missing


# Exported constants
TOKEN: str | None = settings.BOT_TOKEN
ALLOWED: set[int] = settings.ALLOWED_CHAT_IDS
RATE_LIMIT_S: float = settings.RATE_LIMIT_S
POLL_INTERVAL_S: float = settings.POLL_INTERVAL_S
HISTORY_MAX_POINTS: int = settings.HISTORY_MAX_POINTS
