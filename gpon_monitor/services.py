"""Read and control operations on a running monitor.

Queries read the last persisted or in-memory state, so they keep answering
while the router is unreachable.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Sequence, TypeVar

from .background import CycleReport
from .models.alerts import AlertStatistics, TrackingSnapshot
from .models.traffic import HistoryPoint, MonitoredEntity
from .monitor import Monitor
from .router import RouterError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def downsample(points: Sequence[T], max_points: int) -> list[T]:
    """Keep every ``ceil(n / max_points)``-th point plus the most recent one.

    Example:
        >>> downsample(list(range(10)), 4)
        [0, 3, 6, 9]
    """
    n = len(points)
    if max_points <= 0 or n <= max_points:
        return list(points)
    if max_points == 1:
        return [points[-1]]
    stride = math.ceil(n / max_points)
    picked = list(points[::stride])
    if (n - 1) % stride:
        if len(picked) < max_points:
            picked.append(points[-1])
        else:
            picked[-1] = points[-1]
    return picked


async def tracking_snapshot(monitor: Monitor) -> list[TrackingSnapshot]:
    return monitor.alerts.snapshot()


async def traffic_history(
    monitor: Monitor,
    name: str,
    hours: float = 24.0,
    max_points: int | None = None,
) -> list[HistoryPoint]:
    since = int(monitor.clock() - hours * 3600)
    points = await asyncio.to_thread(monitor.store.traffic_history, name, since)
    limit = max_points if max_points is not None else monitor.settings.HISTORY_MAX_POINTS
    return downsample(points, limit)


async def trigger_poll(monitor: Monitor) -> CycleReport:
    """Run one cycle now; waits for any in-flight cycle first."""
    return await monitor.scheduler.run_cycle()


async def alert_statistics(monitor: Monitor) -> AlertStatistics | None:
    return await monitor.alerts.statistics()


async def monitored_queues(monitor: Monitor) -> list[MonitoredEntity]:
    entities = await asyncio.to_thread(monitor.store.monitored_entities)
    return [entities[name] for name in sorted(entities)]


async def channels(monitor: Monitor) -> list[tuple[str, bool, bool]]:
    return [(c.name, c.configured, c.enabled) for c in monitor.dispatcher.channels]


async def set_channel(monitor: Monitor, name: str, enabled: bool) -> bool:
    return monitor.dispatcher.set_channel_status(name, enabled)


async def health(monitor: Monitor) -> dict[str, bool]:
    checks: dict[str, bool] = {}
    try:
        checks["database"] = await asyncio.to_thread(monitor.store.ping)
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        checks["database"] = False
    try:
        await monitor.router.identity(retry=False)
        checks["router"] = True
    except RouterError as exc:
        logger.warning("Router health check failed: %s", exc)
        checks["router"] = False
    checks["poller"] = monitor.scheduler.running
    checks["notifications"] = bool(monitor.dispatcher.active_channels())
    return checks


async def reset_alerts(monitor: Monitor) -> int:
    """Close all open alerts between cycles."""
    async with monitor.scheduler.cycle_lock:
        return await monitor.alerts.reset()
