"""Command registry (single source of truth for help + wiring)."""

from __future__ import annotations

from .models.command_spec import CommandSpec, Group


_MONITOR_COMMANDS = (
    CommandSpec(
        "status",
        "Monitor",
        "/status",
        "open alerts and last poll cycle",
        "cmd_status",
    ),
    CommandSpec(
        "queues",
        "Monitor",
        "/queues",
        "monitored queues and thresholds",
        "cmd_queues",
    ),
    CommandSpec(
        "history",
        "Monitor",
        "/history <queue> [hours]",
        "traffic samples for a queue (default 24h)",
        "cmd_history",
    ),
    CommandSpec("poll", "Monitor", "/poll", "run a poll cycle now", "cmd_poll"),
    CommandSpec(
        "health",
        "Monitor",
        "/health",
        "database, router and poller readiness",
        "cmd_health",
    ),
)

_ALERT_COMMANDS = (
    CommandSpec(
        "alertstats",
        "Alerts",
        "/alertstats",
        "alert counts for the last 24 hours",
        "cmd_alertstats",
    ),
    CommandSpec(
        "channels",
        "Alerts",
        "/channels [email|telegram on|off]",
        "show or toggle notification channels",
        "cmd_channels",
    ),
    CommandSpec(
        "alertreset",
        "Alerts",
        "/alertreset",
        "close all open alerts",
        "cmd_alertreset",
    ),
)

_INFO_COMMANDS = (
    CommandSpec("start", "Info", "/start", "show help", "cmd_start"),
    CommandSpec("help", "Info", "/help", "this menu", "cmd_help"),
    CommandSpec(
        "metrics",
        "Info",
        "/metrics",
        "poll and command metrics summary",
        "cmd_metrics",
    ),
)

COMMANDS: tuple[CommandSpec, ...] = _MONITOR_COMMANDS + _ALERT_COMMANDS + _INFO_COMMANDS

GROUP_ORDER: tuple[Group, ...] = ("Monitor", "Alerts", "Info")
