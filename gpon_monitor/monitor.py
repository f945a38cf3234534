"""Wire the store, router, sampler, alerting and scheduler together."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .alerting import AlertManager
from .background import PollScheduler
from .clock import Clock, system_clock
from .models.metrics import PollMetrics
from .models.settings import Settings
from .notifications import (
    EmailChannel,
    NotificationChannel,
    NotificationDispatcher,
    TelegramChannel,
)
from .router import RouterClient
from .sampler import TrafficSampler
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class Monitor:
    settings: Settings
    store: Store
    router: RouterClient
    sampler: TrafficSampler
    dispatcher: NotificationDispatcher
    alerts: AlertManager
    scheduler: PollScheduler
    metrics: PollMetrics
    clock: Clock = system_clock

    async def start(self) -> None:
        """Rebuild alert tracking from the store, then start polling."""
        await self.alerts.restore_state()
        self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        self.store.close()
        logger.info("Monitor closed")


def build_channels(settings: Settings, bot=None) -> list[NotificationChannel]:
    return [
        EmailChannel(
            user=settings.EMAIL_USER,
            password=settings.EMAIL_PASS,
            recipients=settings.EMAIL_TO,
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            starttls=settings.SMTP_STARTTLS,
            timeout=settings.NOTIFY_TIMEOUT_S,
            enabled=settings.ENABLE_EMAIL,
        ),
        TelegramChannel(
            bot=bot,
            chat_ids=settings.ALERT_CHAT_IDS,
            enabled=settings.ENABLE_TELEGRAM,
        ),
    ]


def build_monitor(
    settings: Settings,
    bot=None,
    clock: Clock = system_clock,
    *,
    router: RouterClient | None = None,
    store: Store | None = None,
    channels: list[NotificationChannel] | None = None,
) -> Monitor:
    metrics = PollMetrics()
    store = store if store is not None else Store(settings.DB_PATH)
    if router is None:
        router = RouterClient(
            host=settings.ROUTER_HOST or "",
            user=settings.ROUTER_USER or "",
            password=settings.ROUTER_PASS or "",
            port=settings.ROUTER_PORT,
            scheme=settings.ROUTER_SCHEME,
            verify_tls=settings.ROUTER_VERIFY_TLS,
            timeout=settings.ROUTER_TIMEOUT_S,
            max_retries=settings.ROUTER_MAX_RETRIES,
        )
    dispatcher = NotificationDispatcher(
        channels if channels is not None else build_channels(settings, bot),
        timeout_s=settings.NOTIFY_TIMEOUT_S,
    )
    sampler = TrafficSampler(store, prefix=settings.QUEUE_PREFIX, metrics=metrics)
    alerts = AlertManager(
        store,
        dispatcher,
        clock,
        default_threshold_kb=settings.DEFAULT_THRESHOLD_KB,
        first_alert_delay_s=settings.FIRST_ALERT_DELAY_S,
        second_alert_delay_s=settings.SECOND_ALERT_DELAY_S,
        send_recovery_notifications=settings.SEND_RECOVERY_NOTIFICATIONS,
        metrics=metrics,
    )
    scheduler = PollScheduler(
        router,
        sampler,
        alerts,
        store,
        interval_s=settings.POLL_INTERVAL_S,
        clock=clock,
        metrics=metrics,
        retention_days=settings.DATA_RETENTION_DAYS,
    )
    return Monitor(
        settings=settings,
        store=store,
        router=router,
        sampler=sampler,
        dispatcher=dispatcher,
        alerts=alerts,
        scheduler=scheduler,
        metrics=metrics,
        clock=clock,
    )
