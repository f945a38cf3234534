"""Shared test fixtures and dummy classes."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from gpon_monitor.models.alerts import AlertEvent
from gpon_monitor.models.settings import Settings
from gpon_monitor.models.traffic import QueueInfo
from gpon_monitor.notifications import NotificationChannel
from gpon_monitor.router import RouterError
from gpon_monitor.store import Store


class DummyChat:
    """Dummy Telegram chat for testing."""

    def __init__(self, chat_id: int) -> None:
        self.id = chat_id
        self.sent: list[str] = []

    async def send_message(self, text: str) -> None:
        self.sent.append(text)


class DummyUser:
    """Dummy Telegram user for testing."""

    def __init__(self, user_id: int, username: str | None = None) -> None:
        self.id = user_id
        self.username = username


class DummyMessage:
    """Dummy Telegram message for testing."""

    def __init__(self) -> None:
        self.replies: list[str] = []

    async def reply_text(self, text: str, **_: Any) -> None:
        self.replies.append(text)


class DummyUpdate:
    """Dummy Telegram update for testing."""

    def __init__(self, chat_id: int, user_id: int) -> None:
        self.effective_chat = DummyChat(chat_id)
        self.effective_user = DummyUser(user_id)
        self.message = DummyMessage()
        self.effective_message = self.message


class DummyApplication:
    """Dummy Telegram application for testing."""

    def __init__(self) -> None:
        self.bot_data: dict[str, object] = {}


class DummyContext:
    """Dummy Telegram context for testing."""

    def __init__(self, args: list[str] | None = None) -> None:
        self.args = args or []
        self.application = DummyApplication()


class DummyBot:
    """Dummy Telegram bot recording send_message calls."""

    def __init__(self, fail_for: set[int] | None = None) -> None:
        self.sent: list[tuple[int, str, Any]] = []
        self.fail_for = fail_for or set()

    async def send_message(self, chat_id: int, text: str, parse_mode: Any = None) -> None:
        if chat_id in self.fail_for:
            raise RuntimeError(f"chat {chat_id} unreachable")
        self.sent.append((chat_id, text, parse_mode))


class FakeClock:
    """Controllable wall clock (epoch seconds)."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRouter:
    """Router stand-in returning a scripted queue list."""

    def __init__(self, queues: list[QueueInfo] | None = None) -> None:
        self.queues = list(queues or [])
        self.fail: Exception | None = None
        self.calls = 0
        self.identity_retries: list[bool] = []

    async def list_queues(self) -> list[QueueInfo]:
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        return list(self.queues)

    async def identity(self, retry: bool = True) -> str:
        self.identity_retries.append(retry)
        if self.fail is not None:
            raise RouterError(str(self.fail))
        return "fake-router"


class FakeChannel(NotificationChannel):
    """Notification channel recording rendered events."""

    def __init__(
        self,
        name: str,
        configured: bool = True,
        enabled: bool = True,
        error: Exception | None = None,
        delay_s: float = 0.0,
    ) -> None:
        super().__init__(enabled)
        self.name = name
        self._configured = configured
        self.error = error
        self.delay_s = delay_s
        self.sent: list[AlertEvent] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def render(self, event: AlertEvent) -> AlertEvent:
        return event

    async def send(self, message: AlertEvent) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        self.sent.append(message)

    def stages(self) -> list[str]:
        return [event.stage for event in self.sent]


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = dict(
        BOT_TOKEN=None,
        ALLOWED_CHAT_IDS={42},
        ALERT_CHAT_IDS={42},
        RATE_LIMIT_S=0.0,
        ROUTER_HOST="192.0.2.1",
        ROUTER_PORT=443,
        ROUTER_SCHEME="https",
        ROUTER_USER="monitor",
        ROUTER_PASS="secret",
        ROUTER_VERIFY_TLS=False,
        ROUTER_TIMEOUT_S=5.0,
        ROUTER_MAX_RETRIES=1,
        QUEUE_PREFIX="GPON",
        POLL_INTERVAL_S=30.0,
        DEFAULT_THRESHOLD_KB=0.01,
        FIRST_ALERT_DELAY_S=600,
        SECOND_ALERT_DELAY_S=10800,
        SEND_RECOVERY_NOTIFICATIONS=False,
        ENABLE_EMAIL=True,
        ENABLE_TELEGRAM=True,
        SMTP_HOST="smtp.example.com",
        SMTP_PORT=587,
        SMTP_STARTTLS=True,
        EMAIL_USER=None,
        EMAIL_PASS=None,
        EMAIL_TO=[],
        NOTIFY_TIMEOUT_S=1.0,
        DB_PATH=":memory:",
        DATA_RETENTION_DAYS=30,
        HISTORY_MAX_POINTS=200,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "gpon.db")
    yield s
    s.close()
