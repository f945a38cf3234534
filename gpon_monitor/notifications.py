"""Alert notification channels and the concurrent fan-out dispatcher."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from typing import Any, Iterable

from telegram.constants import ParseMode

from . import view
from .models.alerts import AlertEvent, ChannelOutcome

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """A transport that can render an alert event and deliver it.

    ``send`` raises on failure; the dispatcher turns that into a failed
    ``ChannelOutcome`` without affecting other channels.
    """

    name: str = "channel"

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when the channel has the credentials it needs."""

    @abstractmethod
    def render(self, event: AlertEvent) -> Any:
        """Build the channel-specific message for ``event``."""

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Deliver a rendered message."""


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(
        self,
        user: str | None,
        password: str | None,
        recipients: list[str],
        host: str = "smtp.gmail.com",
        port: int = 587,
        starttls: bool = True,
        timeout: float = 15.0,
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled)
        self.user = user
        self.password = password
        self.recipients = list(recipients)
        self.host = host
        self.port = port
        self.starttls = starttls
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password and self.recipients)

    def render(self, event: AlertEvent) -> MIMEText:
        msg = MIMEText(view.render_email_body(event), "plain", "utf-8")
        msg["Subject"] = view.render_email_subject(event)
        msg["From"] = f"GPON Monitor <{self.user}>"
        msg["To"] = ", ".join(self.recipients)
        return msg

    def _send_sync(self, message: MIMEText) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls:
                server.starttls()
            server.login(self.user, self.password)
            server.send_message(message)

    async def send(self, message: MIMEText) -> None:
        await asyncio.to_thread(self._send_sync, message)


class TelegramChannel(NotificationChannel):
    """Send HTML alerts through a python-telegram-bot ``Bot``."""

    name = "telegram"

    def __init__(self, bot, chat_ids: Iterable[int], enabled: bool = True) -> None:
        super().__init__(enabled)
        self.bot = bot
        self.chat_ids = sorted(set(chat_ids))

    @property
    def configured(self) -> bool:
        return self.bot is not None and bool(self.chat_ids)

    def render(self, event: AlertEvent) -> str:
        return view.render_alert_html(event)

    async def send(self, message: str) -> None:
        failures: list[str] = []
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(
                    chat_id=chat_id, text=message, parse_mode=ParseMode.HTML
                )
            except Exception as exc:
                logger.warning("Telegram alert to chat_id=%s failed: %s", chat_id, exc)
                failures.append(f"{chat_id}: {exc}")
        if failures:
            raise RuntimeError(
                f"Telegram send failed for {len(failures)}/{len(self.chat_ids)} chats: "
                + "; ".join(failures)
            )


class NotificationDispatcher:
    """Fan an alert event out to every configured and enabled channel."""

    def __init__(
        self, channels: Iterable[NotificationChannel], timeout_s: float = 15.0
    ) -> None:
        self._channels = list(channels)
        self.timeout_s = timeout_s
        for channel in self._channels:
            if not channel.configured:
                logger.info("Notification channel %s not configured", channel.name)
            else:
                logger.info(
                    "Notification channel %s %s",
                    channel.name,
                    "enabled" if channel.enabled else "disabled",
                )
        if not self.active_channels():
            logger.warning("No notification channels configured")

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def active_channels(self) -> list[str]:
        return [c.name for c in self._channels if c.configured and c.enabled]

    def set_channel_status(self, name: str, enabled: bool) -> bool:
        for channel in self._channels:
            if channel.name == name:
                channel.enabled = enabled
                logger.info("Channel %s %s", name, "enabled" if enabled else "disabled")
                return True
        return False

    async def _send_one(
        self, channel: NotificationChannel, event: AlertEvent
    ) -> ChannelOutcome:
        try:
            message = channel.render(event)
            await asyncio.wait_for(channel.send(message), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.error(
                "Alert via %s timed out after %.1fs (queue=%s stage=%s)",
                channel.name,
                self.timeout_s,
                event.name,
                event.stage,
            )
            return ChannelOutcome(
                channel=channel.name,
                success=False,
                error=f"timed out after {self.timeout_s:.1f}s",
            )
        except Exception as exc:
            logger.error(
                "Failed to send alert via %s (queue=%s stage=%s): %s",
                channel.name,
                event.name,
                event.stage,
                exc,
            )
            return ChannelOutcome(channel=channel.name, success=False, error=str(exc))
        logger.info(
            "Alert sent via %s (queue=%s stage=%s)", channel.name, event.name, event.stage
        )
        return ChannelOutcome(channel=channel.name, success=True)

    async def dispatch(self, event: AlertEvent) -> list[ChannelOutcome]:
        targets = [c for c in self._channels if c.configured and c.enabled]
        if not targets:
            logger.warning(
                "No enabled notification channels - alert not sent (queue=%s stage=%s)",
                event.name,
                event.stage,
            )
            return []
        return list(
            await asyncio.gather(*(self._send_one(c, event) for c in targets))
        )
