"""Per-queue alert escalation: below threshold → first → second → recovered.

``AlertManager.tracking`` is a cache of the open rows in the ``alerts`` table.
It is rebuilt from the store on boot, and whenever a queue without a tracking
entry drops below threshold the store is consulted first so an open record is
adopted rather than duplicated.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar

from .clock import Clock, system_clock
from .models.alerts import (
    AlertEvent,
    AlertHistoryEntry,
    AlertStatistics,
    ChannelOutcome,
    Stage,
    TrackingSnapshot,
    TrackingState,
)
from .models.metrics import PollMetrics
from .models.traffic import MonitoredEntity, TrafficSample
from .notifications import NotificationDispatcher
from .store import OpenAlertResult, Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATS_WINDOW_S = 24 * 60 * 60


@dataclass
class EvaluationResult:
    active: int = 0
    transitions: int = 0
    notifications: int = 0


class AlertManager:
    def __init__(
        self,
        store: Store,
        dispatcher: NotificationDispatcher,
        clock: Clock = system_clock,
        *,
        default_threshold_kb: float = 0.01,
        first_alert_delay_s: float = 10 * 60,
        second_alert_delay_s: float = 3 * 60 * 60,
        send_recovery_notifications: bool = False,
        metrics: PollMetrics | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.default_threshold_kb = default_threshold_kb
        self.first_alert_delay_s = first_alert_delay_s
        self.second_alert_delay_s = second_alert_delay_s
        self.send_recovery_notifications = send_recovery_notifications
        self.metrics = metrics if metrics is not None else PollMetrics()
        self.tracking: dict[str, TrackingState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        logger.info(
            "AlertManager initialized (first=%ss second=%ss default=%s KB/s recovery=%s)",
            first_alert_delay_s,
            second_alert_delay_s,
            default_threshold_kb,
            send_recovery_notifications,
        )

    async def _persist(
        self, action: str, name: str | None, fn: Callable[..., T], *args
    ) -> T | None:
        """Run a store call off the loop; failures are logged and return None."""
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error:
            self.metrics.store_errors += 1
            logger.exception("Failed to %s (queue=%s)", action, name or "*")
            return None

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def _report_repairs(self, name: str, repaired: int) -> None:
        if repaired <= 0:
            return
        self.metrics.invariant_violations += repaired
        logger.error(
            "Found %s extra open alert record(s) for %s; closed the older ones",
            repaired,
            name,
        )

    async def restore_state(self) -> int:
        """Rebuild tracking from open alert records; returns entries restored."""
        repaired = await self._persist(
            "repair open alerts", None, self.store.repair_open_alerts, self.clock()
        )
        for name, count in (repaired or {}).items():
            self._report_repairs(name, count)

        records = await self._persist("load open alerts", None, self.store.open_alerts)
        if records is None:
            return 0

        self.tracking.clear()
        for record in records:
            if record.name in self.tracking:
                continue
            first = record.notified_first
            if record.notified_second and not first:
                self.metrics.invariant_violations += 1
                logger.error(
                    "Open alert %s for %s has second flag without first; treating as first sent",
                    record.id,
                    record.name,
                )
                first = True
            self.tracking[record.name] = TrackingState(
                first_crossing_time=record.start_time,
                first_notified=first,
                second_notified=record.notified_second,
            )
        logger.info("Restored %s active alerts from database", len(self.tracking))
        return len(self.tracking)

    def threshold_for(self, entity: MonitoredEntity) -> float:
        raw = entity.threshold_kb
        if raw is None:
            return self.default_threshold_kb
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = 0.0
        if value <= 0:
            logger.warning(
                "Invalid threshold %r for %s; using default %s KB/s",
                raw,
                entity.name,
                self.default_threshold_kb,
            )
            return self.default_threshold_kb
        return value

    async def evaluate(
        self,
        samples: Iterable[TrafficSample],
        entities: dict[str, MonitoredEntity],
    ) -> EvaluationResult:
        result = EvaluationResult()
        for sample in samples:
            entity = entities.get(sample.name)
            # Inactive queues keep their tracking entry untouched until re-activated
            if entity is None or not entity.active:
                continue
            result.active += 1
            stage, sent = await self.check_alert(
                sample.name,
                sample.total_kb,
                sample.target,
                self.threshold_for(entity),
            )
            if stage is not None:
                result.transitions += 1
            if sent:
                result.notifications += 1
        return result

    async def check_alert(
        self, name: str, total_kb: float, target: str, threshold: float
    ) -> tuple[Stage | None, bool]:
        """Apply one observation; returns (stage fired, notification dispatched)."""
        async with self._lock_for(name):
            now = self.clock()
            track = self.tracking.get(name)

            if total_kb < threshold:
                if track is None:
                    track = await self._open(name, now, total_kb, threshold, target)
                elapsed = now - track.first_crossing_time
                if not track.first_notified:
                    if elapsed >= self.first_alert_delay_s:
                        sent = await self._escalate(
                            "first", name, track, total_kb, target, threshold, now
                        )
                        return "first", sent
                elif not track.second_notified and elapsed >= self.second_alert_delay_s:
                    sent = await self._escalate(
                        "second", name, track, total_kb, target, threshold, now
                    )
                    return "second", sent
                return None, False

            if track is not None:
                sent = await self._recover(name, track, total_kb, target, threshold, now)
                return "recovery", sent
            return None, False

    async def _open(
        self, name: str, now: float, total_kb: float, threshold: float, target: str
    ) -> TrackingState:
        result: OpenAlertResult | None = await self._persist(
            "create alert record", name, self.store.open_alert, name, now
        )
        if result is None or result.created:
            track = TrackingState(first_crossing_time=now)
            logger.warning(
                "Traffic below threshold for %s (%.2f < %s KB/s, ip=%s)",
                name,
                total_kb,
                threshold,
                target,
            )
        else:
            record = result.record
            track = TrackingState(
                first_crossing_time=record.start_time,
                first_notified=record.notified_first or record.notified_second,
                second_notified=record.notified_second,
            )
            self._report_repairs(name, result.repaired)
            logger.info("Adopted open alert record %s for %s", record.id, name)
        self.tracking[name] = track
        return track

    async def _dispatch(self, event: AlertEvent) -> list[ChannelOutcome]:
        try:
            outcomes = await self.dispatcher.dispatch(event)
        except Exception:
            logger.exception(
                "Dispatcher failed (queue=%s stage=%s)", event.name, event.stage
            )
            return []
        for outcome in outcomes:
            if outcome.success:
                self.metrics.record_alert(event.stage, outcome.channel)
        return outcomes

    async def _record_history(self, event: AlertEvent, outcomes: list[ChannelOutcome]) -> bool:
        if not any(o.success for o in outcomes):
            return False
        entry = AlertHistoryEntry(
            name=event.name,
            alert_type=event.stage,
            traffic_kb=event.traffic_kb,
            threshold_kb=event.threshold_kb,
            triggered_at=event.timestamp,
        )
        await self._persist(
            "record alert history", event.name, self.store.record_alert_history, entry
        )
        return True

    async def _escalate(
        self,
        stage: Stage,
        name: str,
        track: TrackingState,
        total_kb: float,
        target: str,
        threshold: float,
        now: float,
    ) -> bool:
        event = AlertEvent(
            name=name,
            traffic_kb=total_kb,
            target=target,
            threshold_kb=threshold,
            stage=stage,
            since=track.first_crossing_time,
            timestamp=now,
        )
        outcomes = await self._dispatch(event)

        # The stage counts as attempted whatever the per-channel outcome
        if stage == "first":
            track.first_notified = True
        else:
            track.second_notified = True

        updated = await self._persist(
            f"persist {stage} alert flag", name, self.store.mark_notified, name, stage, now
        )
        if updated == 0:
            logger.warning("No open alert record to flag %s stage for %s", stage, name)
        await self._record_history(event, outcomes)
        return bool(outcomes)

    async def _recover(
        self,
        name: str,
        track: TrackingState,
        total_kb: float,
        target: str,
        threshold: float,
        now: float,
    ) -> bool:
        logger.info(
            "Traffic recovered for %s (%.2f KB/s after %.0fs)",
            name,
            total_kb,
            now - track.first_crossing_time,
        )
        outcomes: list[ChannelOutcome] = []
        if self.send_recovery_notifications:
            event = AlertEvent(
                name=name,
                traffic_kb=total_kb,
                target=target,
                threshold_kb=threshold,
                stage="recovery",
                since=track.first_crossing_time,
                timestamp=now,
            )
            outcomes = await self._dispatch(event)
            await self._record_history(event, outcomes)

        await self._persist("resolve alert", name, self.store.close_alert, name, now)
        self.tracking.pop(name, None)
        return bool(outcomes)

    def snapshot(self) -> list[TrackingSnapshot]:
        return [
            TrackingSnapshot(
                name=name,
                first_crossing_time=track.first_crossing_time,
                first_notified=track.first_notified,
                second_notified=track.second_notified,
                phase=track.phase,
            )
            for name, track in sorted(self.tracking.items())
        ]

    async def statistics(self, window_s: float = _STATS_WINDOW_S) -> AlertStatistics | None:
        return await self._persist(
            "get alert statistics",
            None,
            self.store.alert_statistics,
            self.clock() - window_s,
        )

    async def reset(self) -> int:
        """Close every open alert record and forget all tracking."""
        closed = await self._persist(
            "close open alerts", None, self.store.close_all_open_alerts, self.clock()
        )
        self.tracking.clear()
        logger.info("Alert tracking reset; closed %s open alerts", closed or 0)
        return closed or 0
