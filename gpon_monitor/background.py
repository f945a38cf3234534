"""Background poll loop (started once per Application)."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass

from .alerting import AlertManager
from .clock import Clock, system_clock
from .models.bot_state import MONITOR_KEY
from .models.metrics import PollMetrics
from .router import RouterClient, RouterError
from .sampler import TrafficSampler
from .store import Store

logger = logging.getLogger(__name__)

_DAY_S = 24 * 60 * 60
_STOP_GRACE_S = 10.0


@dataclass(frozen=True)
class CycleReport:
    ok: bool
    started_at: float
    duration_s: float
    queues: int = 0
    samples_written: int = 0
    active: int = 0
    transitions: int = 0
    notifications: int = 0
    error: str | None = None


class PollScheduler:
    """Run sampler → evaluator cycles on a fixed interval.

    Cycles never overlap: the loop and manual triggers share one lock, and the
    loop sleeps ``interval - elapsed`` so a slow cycle is followed immediately
    by the next one instead of compounding.
    """

    def __init__(
        self,
        router: RouterClient,
        sampler: TrafficSampler,
        alerts: AlertManager,
        store: Store,
        interval_s: float = 30.0,
        clock: Clock = system_clock,
        metrics: PollMetrics | None = None,
        retention_days: int = 30,
    ):
        self.router = router
        self.sampler = sampler
        self.alerts = alerts
        self.store = store
        self.interval_s = interval_s
        self.clock = clock
        self.metrics = metrics if metrics is not None else PollMetrics()
        self.retention_days = retention_days
        self.last_report: CycleReport | None = None
        self._cycle_lock = asyncio.Lock()
        self._stopping: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._last_prune: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_lock(self) -> asyncio.Lock:
        return self._cycle_lock

    async def run_cycle(self) -> CycleReport:
        async with self._cycle_lock:
            report = await self._run_cycle()
        await self._maybe_prune()
        return report

    async def _record_health(self, name: str, value: float) -> None:
        try:
            await asyncio.to_thread(
                self.store.record_health_metric, name, value, self.clock()
            )
        except sqlite3.Error:
            self.metrics.store_errors += 1
            logger.exception("Failed to record health metric %s", name)

    async def _run_cycle(self) -> CycleReport:
        start = time.monotonic()
        now = self.clock()
        logger.debug("Starting traffic check")
        try:
            try:
                queues = await self.router.list_queues()
            except Exception:
                self.metrics.router_errors += 1
                raise
            samples = self.sampler.collect(queues, now)
            written = await self.sampler.record(samples)
            entities = await asyncio.to_thread(self.store.monitored_entities)
            result = await self.alerts.evaluate(samples, entities)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            duration = time.monotonic() - start
            if isinstance(exc, RouterError):
                logger.error("Monitor cycle aborted: %s", exc)
            else:
                logger.exception("Monitor error")
            self.metrics.record_cycle(duration, ok=False, error_msg=str(exc))
            await self._record_health("monitor_errors", 1)
            report = CycleReport(
                ok=False, started_at=now, duration_s=duration, error=str(exc)
            )
        else:
            duration = time.monotonic() - start
            self.metrics.active_queues = result.active
            self.metrics.record_cycle(duration, ok=True, error_msg=None)
            await self._record_health("monitor_duration_seconds", duration)
            logger.info(
                "Traffic check completed in %.2fs (queues=%s active=%s transitions=%s)",
                duration,
                len(samples),
                result.active,
                result.transitions,
            )
            report = CycleReport(
                ok=True,
                started_at=now,
                duration_s=duration,
                queues=len(samples),
                samples_written=written,
                active=result.active,
                transitions=result.transitions,
                notifications=result.notifications,
            )
        self.last_report = report
        return report

    async def _maybe_prune(self) -> None:
        if self.retention_days <= 0:
            return
        now = self.clock()
        if self._last_prune is not None and now - self._last_prune < _DAY_S:
            return
        self._last_prune = now
        cutoff = int(now - self.retention_days * _DAY_S)
        try:
            deleted = await asyncio.to_thread(self.store.prune_samples, cutoff)
        except sqlite3.Error:
            self.metrics.store_errors += 1
            logger.exception("Failed to prune traffic samples")
            return
        if deleted:
            logger.info(
                "Pruned %s traffic samples older than %s days", deleted, self.retention_days
            )

    async def _loop(self) -> None:
        assert self._stopping is not None
        logger.info("Starting traffic monitor (interval=%ss)", self.interval_s)
        while not self._stopping.is_set():
            start = time.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Traffic monitor loop error")
            elapsed = time.monotonic() - start
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=max(0.0, self.interval_s - elapsed)
                )
            except asyncio.TimeoutError:
                pass
        logger.info("Traffic monitor stopped")

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="traffic_monitor")
        return self._task

    async def stop(self, grace_s: float = _STOP_GRACE_S) -> None:
        """Let the in-flight cycle finish within ``grace_s``, then cancel."""
        task = self._task
        if task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace_s)
        except asyncio.TimeoutError:
            logger.warning("Traffic monitor did not stop within %.1fs; cancelling", grace_s)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None


def ensure_started(app) -> None:
    monitor = app.bot_data.get(MONITOR_KEY)
    if monitor is None:
        return
    monitor.scheduler.start()
