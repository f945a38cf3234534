"""Alert record, history and tracking dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Stage = Literal["first", "second", "recovery"]

TrackingPhase = Literal["below_threshold", "first_notified", "second_notified"]


@dataclass
class AlertRecord:
    """Durable alert row; ``end_time is None`` means the alert is open."""

    id: int
    name: str
    start_time: float
    end_time: float | None = None
    notified_first: bool = False
    notified_second: bool = False
    first_alert_sent_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class AlertHistoryEntry:
    name: str
    alert_type: Stage
    traffic_kb: float
    threshold_kb: float
    triggered_at: float


@dataclass
class TrackingState:
    """In-memory cache of an entity's open AlertRecord."""

    first_crossing_time: float
    first_notified: bool = False
    second_notified: bool = False

    @property
    def phase(self) -> TrackingPhase:
        if self.second_notified:
            return "second_notified"
        if self.first_notified:
            return "first_notified"
        return "below_threshold"


@dataclass(frozen=True)
class TrackingSnapshot:
    name: str
    first_crossing_time: float
    first_notified: bool
    second_notified: bool
    phase: TrackingPhase


@dataclass
class AlertStatistics:
    total_alerts: int = 0
    active_alerts: int = 0
    first_notifications: int = 0
    second_notifications: int = 0
    history_by_stage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertEvent:
    name: str
    traffic_kb: float
    target: str
    threshold_kb: float
    stage: Stage
    since: float
    timestamp: float


@dataclass(frozen=True)
class ChannelOutcome:
    channel: str
    success: bool
    error: str | None = None
