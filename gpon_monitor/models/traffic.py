"""Router queue, monitored entity and traffic sample dataclasses."""

from __future__ import annotations

from dataclasses import dataclass

BYTES_PER_KB = 1024


@dataclass(frozen=True)
class QueueInfo:
    """One simple queue as reported by the router."""

    name: str
    rate: str | None = None
    target: str | None = None


@dataclass(frozen=True)
class MonitoredEntity:
    name: str
    active: bool
    threshold_kb: int | None = None
    updated_at: int | None = None


@dataclass(frozen=True)
class TrafficSample:
    name: str
    rx: int
    tx: int
    timestamp: int
    target: str = "N/A"

    @property
    def total_kb(self) -> float:
        return (self.rx + self.tx) / BYTES_PER_KB


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: int
    rx: int
    tx: int

    @property
    def rx_kb(self) -> float:
        return self.rx / BYTES_PER_KB

    @property
    def tx_kb(self) -> float:
        return self.tx / BYTES_PER_KB

    @property
    def total_kb(self) -> float:
        return (self.rx + self.tx) / BYTES_PER_KB
