"""Command and poll metrics dataclasses."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

MAX_DURATION_SAMPLES = 200


@dataclass
class CommandMetrics:
    count: int = 0
    success: int = 0
    error: int = 0
    rate_limited: int = 0
    total_latency_s: float = 0.0
    max_latency_s: float = 0.0
    latencies_s: list[float] = field(default_factory=list)
    last_error: str | None = None
    last_run_ts: float | None = None


@dataclass
class PollMetrics:
    cycles: int = 0
    failed_cycles: int = 0
    total_duration_s: float = 0.0
    max_duration_s: float = 0.0
    durations_s: list[float] = field(default_factory=list)
    last_duration_s: float | None = None
    last_run_ts: float | None = None
    last_success_ts: float | None = None
    last_error: str | None = None
    active_queues: int = 0
    router_errors: int = 0
    store_errors: int = 0
    sample_errors: int = 0
    invariant_violations: int = 0
    alerts_sent: dict[tuple[str, str], int] = field(default_factory=dict)

    def record_cycle(self, duration_s: float, ok: bool, error_msg: str | None) -> None:
        self.cycles += 1
        self.last_run_ts = time.time()
        if ok:
            self.last_success_ts = self.last_run_ts
        else:
            self.failed_cycles += 1
            self.last_error = error_msg
        self.last_duration_s = duration_s
        self.total_duration_s += duration_s
        self.max_duration_s = max(self.max_duration_s, duration_s)
        self.durations_s.append(duration_s)
        if len(self.durations_s) > MAX_DURATION_SAMPLES:
            self.durations_s.pop(0)

    def record_alert(self, stage: str, channel: str) -> None:
        key = (stage, channel)
        self.alerts_sent[key] = self.alerts_sent.get(key, 0) + 1
