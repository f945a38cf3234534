"""View layer for formatting alert notifications and bot replies."""

from __future__ import annotations

import html
import math
import time

from .models.alerts import AlertEvent, AlertStatistics, TrackingSnapshot
from .models.metrics import PollMetrics
from .models.traffic import HistoryPoint, MonitoredEntity


def bold(text: str) -> str:
    return f"<b>{html.escape(str(text))}</b>"


def code(text: str) -> str:
    return f"<code>{html.escape(str(text))}</code>"


def chunk(msg: str, size: int = 4000) -> list[str]:
    """Split message into chunks ensuring no chunk exceeds size limit."""
    if len(msg) <= size:
        return [msg]

    lines = msg.splitlines()
    chunks: list[str] = []
    current = ""
    for line in lines:
        if len(line) > size:
            if current:
                chunks.append(current)
                current = ""
            start = 0
            while start < len(line):
                chunks.append(line[start : start + size])
                start += size
            continue
        added_length = len(line) + (1 if current else 0)
        if len(current) + added_length > size and current:
            chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


def format_duration(duration_s: float) -> str:
    seconds = max(0, int(duration_s))
    if seconds % 3600 == 0 and seconds >= 3600:
        return f"{seconds // 3600}h"
    if seconds >= 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    if seconds % 60 == 0 and seconds >= 60:
        return f"{seconds // 60}m"
    if seconds >= 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


def format_kb(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _format_timestamp(ts: float | None) -> str:
    if not ts:
        return "never"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


def _p95(samples: list[float]) -> float:
    if not samples:
        return 0.0
    ordered = sorted(samples)
    idx = max(0, math.ceil(0.95 * len(ordered)) - 1)
    return ordered[idx]


# Alert notifications

_TELEGRAM_TITLES = {
    "first": ("⚠️", "ALERT"),
    "second": ("🚨", "CRITICAL - STILL DOWN"),
    "recovery": ("✅", "RECOVERED"),
}


def render_alert_html(event: AlertEvent) -> str:
    """Telegram (HTML parse mode) alert body; every interpolated value is escaped."""
    emoji, title = _TELEGRAM_TITLES.get(event.stage, ("⚠️", "ALERT"))
    down_for = format_duration(event.timestamp - event.since)
    lines = [
        f"{emoji} <b>{html.escape(title)}: {html.escape(event.name)}</b>",
        "",
        f"📍 IP: {html.escape(event.target)}",
        f"📊 Current Traffic: {event.traffic_kb:.2f} KB/s",
        f"📉 Threshold: {html.escape(format_kb(event.threshold_kb))} KB/s",
        f"🕐 Time: {html.escape(_format_timestamp(event.timestamp))}",
    ]
    if event.stage == "second":
        lines.extend(["", f"⚠️ Queue has been below threshold for {down_for}!"])
    elif event.stage == "recovery":
        lines.extend(["", f"✅ Traffic restored to normal levels after {down_for}."])
    return "\n".join(lines)


def _header_safe(text: str) -> str:
    return " ".join(str(text).split())


def render_email_subject(event: AlertEvent) -> str:
    name = _header_safe(event.name)
    if event.stage == "second":
        down_for = format_duration(event.timestamp - event.since)
        return f"CRITICAL: {name} - Still Down After {down_for}"
    if event.stage == "recovery":
        return f"RECOVERED: {name} - Traffic Restored"
    return f"ALERT: {name} - Low Traffic Detected"


def render_email_body(event: AlertEvent) -> str:
    down_for = format_duration(event.timestamp - event.since)
    body = (
        f"Queue: {event.name}\n"
        f"IP Address: {event.target}\n"
        f"Current Traffic: {event.traffic_kb:.2f} KB/s\n"
        f"Threshold: {format_kb(event.threshold_kb)} KB/s\n"
        f"Time: {_format_timestamp(event.timestamp)}\n"
    )
    if event.stage == "second":
        body += f"\nCRITICAL: This queue has been below threshold for {down_for}!\n"
    elif event.stage == "recovery":
        body += f"\nTraffic has returned to normal levels after {down_for}.\n"
    return body


# Bot replies


def render_tracking(snapshot: list[TrackingSnapshot], now: float) -> str:
    if not snapshot:
        return "<i>All monitored queues are above threshold.</i>"
    lines = [bold("Open alerts:")]
    for entry in snapshot:
        since = format_duration(now - entry.first_crossing_time)
        lines.append(
            f"{code(entry.name)} • {html.escape(entry.phase.replace('_', ' '))} "
            f"• below for {html.escape(since)}"
        )
    return "\n".join(lines)


def render_poll_status(metrics: PollMetrics, interval_s: float) -> str:
    last = _format_timestamp(metrics.last_run_ts)
    last_ok = _format_timestamp(metrics.last_success_ts)
    duration = (
        f"{metrics.last_duration_s:.2f}s" if metrics.last_duration_s is not None else "n/a"
    )
    lines = [
        f"{bold('Poller:')} every {html.escape(format_duration(interval_s))} "
        f"| active queues {metrics.active_queues}",
        f"{bold('Last cycle:')} {html.escape(last)} ({duration}) "
        f"| last ok {html.escape(last_ok)}",
    ]
    if metrics.last_error:
        lines.append(f"{bold('Last error:')} {html.escape(metrics.last_error)}")
    return "\n".join(lines)


def render_entities(entities: list[MonitoredEntity], default_threshold: float) -> str:
    if not entities:
        return "<i>No queues configured.</i>"
    lines = [bold("Monitored queues:")]
    for e in entities:
        status = "active" if e.active else "inactive"
        threshold = e.threshold_kb if e.threshold_kb else default_threshold
        suffix = "" if e.threshold_kb else " (default)"
        lines.append(
            f"{code(e.name)} • {status} • threshold "
            f"{html.escape(format_kb(threshold))} KB/s{suffix}"
        )
    return "\n".join(lines)


def render_history(name: str, points: list[HistoryPoint], hours: float) -> list[str]:
    """Summary message followed by one ``<pre>`` message per chunk of rows."""
    title = f"Traffic for {name} (last {format_duration(hours * 3600)})"
    if not points:
        return [f"{bold(title)}\n<i>No samples recorded.</i>"]
    totals = [p.total_kb for p in points]
    summary = (
        f"{bold(title)}\n"
        f"min {format_kb(min(totals))} • avg {format_kb(sum(totals) / len(totals))} "
        f"• max {format_kb(max(totals))} KB/s ({len(points)} points)"
    )
    rows = "\n".join(
        f"{time.strftime('%m-%d %H:%M', time.localtime(p.timestamp))} "
        f"rx {p.rx_kb:9.2f} tx {p.tx_kb:9.2f} total {p.total_kb:9.2f}"
        for p in points
    )
    return [summary] + [f"<pre>{html.escape(part)}</pre>" for part in chunk(rows, 3500)]


def render_statistics(stats: AlertStatistics | None) -> str:
    if stats is None:
        return "<i>Alert statistics unavailable.</i>"
    lines = [
        bold("Alerts (last 24h):"),
        f"total {stats.total_alerts} • active {stats.active_alerts}",
        f"first sent {stats.first_notifications} • second sent {stats.second_notifications}",
    ]
    if stats.history_by_stage:
        parts = ", ".join(
            f"{html.escape(k)} {v}" for k, v in sorted(stats.history_by_stage.items())
        )
        lines.append(f"<i>Dispatched:</i> {parts}")
    return "\n".join(lines)


def render_channels(channels: list[tuple[str, bool, bool]]) -> str:
    if not channels:
        return "<i>No notification channels configured.</i>"
    lines = [bold("Notification channels:")]
    for name, configured, enabled in channels:
        if not configured:
            state = "not configured"
        else:
            state = "on" if enabled else "off"
        lines.append(f"{code(name)} • {state}")
    return "\n".join(lines)


def render_cycle_report(report) -> str:
    if not report.ok:
        return f"❌ Poll failed: {html.escape(report.error or 'unknown error')}"
    return (
        f"✅ Poll finished in {report.duration_s:.2f}s: "
        f"{report.queues} queues, {report.samples_written} samples, "
        f"{report.active} active, {report.notifications} notifications"
    )


def render_poll_metrics(metrics: PollMetrics) -> str:
    avg = (metrics.total_duration_s / metrics.cycles) if metrics.cycles else 0.0
    lines = [
        bold("Poll Metrics:"),
        (
            f"cycles {metrics.cycles} failed {metrics.failed_cycles} "
            f"avg {avg * 1000:.1f}ms p95 {_p95(metrics.durations_s) * 1000:.1f}ms "
            f"max {metrics.max_duration_s * 1000:.1f}ms"
        ),
        (
            f"router err {metrics.router_errors} store err {metrics.store_errors} "
            f"sample err {metrics.sample_errors} "
            f"invariant {metrics.invariant_violations}"
        ),
    ]
    for (stage, channel), count in sorted(metrics.alerts_sent.items()):
        lines.append(f"{code(stage)} via {code(channel)}: {count}")
    return "\n".join(lines)


def render_command_metrics(metrics: dict) -> str:
    if not metrics:
        return "<i>No command metrics recorded yet.</i>"

    lines = [bold("Command Metrics:")]
    for name in sorted(metrics.keys()):
        entry = metrics[name]
        avg = (entry.total_latency_s / entry.count) if entry.count else 0.0
        p95 = _p95(entry.latencies_s)
        last_run = _format_timestamp(entry.last_run_ts)
        line = (
            f"{code(name)} runs {entry.count} ok {entry.success} err {entry.error} "
            f"rl {entry.rate_limited} avg {avg * 1000:.1f}ms "
            f"p95 {p95 * 1000:.1f}ms max {entry.max_latency_s * 1000:.1f}ms "
            f"last {html.escape(last_run)}"
        )
        lines.append(line)
    return "\n".join(lines)


def render_health(checks: dict[str, bool]) -> str:
    healthy = all(checks.values()) if checks else False
    lines = [bold("Ready" if healthy else "Not ready")]
    for name, ok in checks.items():
        lines.append(f"{'✅' if ok else '❌'} {html.escape(name)}")
    return "\n".join(lines)
