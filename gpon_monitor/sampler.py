"""Turn router queue rates into traffic samples and append them to the store."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Iterable

from .models.metrics import PollMetrics
from .models.traffic import QueueInfo, TrafficSample
from .store import Store

logger = logging.getLogger(__name__)

# Largest value a SQLite INTEGER column holds
MAX_RATE = 2**63 - 1


def _parse_count(raw: str) -> int | None:
    text = raw.strip()
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    if value > MAX_RATE:
        return None
    return value


def parse_rate(raw: object) -> tuple[int, int]:
    """Parse a ``"<rx>/<tx>"`` bytes/s rate string.

    Missing or malformed rates (anything but two non-negative ASCII integers
    that fit a SQLite INTEGER) yield ``(0, 0)`` so one bad queue never
    blocks a cycle.

    Example:
        >>> parse_rate("2048/1024")
        (2048, 1024)
        >>> parse_rate("abc")
        (0, 0)
    """
    if not isinstance(raw, str) or "/" not in raw:
        return 0, 0
    rx_raw, _, tx_raw = raw.partition("/")
    rx = _parse_count(rx_raw)
    tx = _parse_count(tx_raw)
    if rx is None or tx is None:
        return 0, 0
    return rx, tx


class TrafficSampler:
    def __init__(
        self,
        store: Store,
        prefix: str = "GPON",
        metrics: PollMetrics | None = None,
    ):
        self.store = store
        self.prefix = prefix
        self.metrics = metrics if metrics is not None else PollMetrics()

    def is_monitored(self, name: str | None) -> bool:
        return bool(name) and str(name).startswith(self.prefix)

    def collect(self, queues: Iterable[QueueInfo], now: float) -> list[TrafficSample]:
        ts = int(now)
        samples: list[TrafficSample] = []
        for q in queues:
            if not self.is_monitored(q.name):
                continue
            rx, tx = parse_rate(q.rate)
            samples.append(
                TrafficSample(
                    name=q.name,
                    rx=rx,
                    tx=tx,
                    timestamp=ts,
                    target=q.target or "N/A",
                )
            )
        return samples

    async def record(self, samples: Iterable[TrafficSample]) -> int:
        """Append each sample; returns how many were written."""
        written = 0
        for sample in samples:
            try:
                await asyncio.to_thread(self.store.append_sample, sample)
            except (sqlite3.Error, OverflowError):
                self.metrics.sample_errors += 1
                logger.exception("Failed to log traffic for %s", sample.name)
                continue
            written += 1
        return written

    async def sample(self, queues: Iterable[QueueInfo], now: float) -> list[TrafficSample]:
        samples = self.collect(queues, now)
        await self.record(samples)
        return samples
