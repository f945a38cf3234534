"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Set


@dataclass
class Settings:
    """Configuration settings for gpon_monitor."""

    BOT_TOKEN: str | None
    ALLOWED_CHAT_IDS: Set[int]
    ALERT_CHAT_IDS: Set[int]
    RATE_LIMIT_S: float

    ROUTER_HOST: str | None
    ROUTER_PORT: int
    ROUTER_SCHEME: str
    ROUTER_USER: str | None
    ROUTER_PASS: str | None
    ROUTER_VERIFY_TLS: bool
    ROUTER_TIMEOUT_S: float
    ROUTER_MAX_RETRIES: int

    QUEUE_PREFIX: str
    POLL_INTERVAL_S: float
    DEFAULT_THRESHOLD_KB: float
    FIRST_ALERT_DELAY_S: int
    SECOND_ALERT_DELAY_S: int
    SEND_RECOVERY_NOTIFICATIONS: bool

    ENABLE_EMAIL: bool
    ENABLE_TELEGRAM: bool
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_STARTTLS: bool
    EMAIL_USER: str | None
    EMAIL_PASS: str | None
    EMAIL_TO: List[str]
    NOTIFY_TIMEOUT_S: float

    DB_PATH: str
    DATA_RETENTION_DAYS: int
    HISTORY_MAX_POINTS: int
