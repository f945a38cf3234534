"""Dispatch layer: applies rate limiting then calls the real handlers."""

from __future__ import annotations

from .common import rate_limit
from . import alerts, meta, monitor


# Meta
cmd_start = rate_limit(meta.cmd_start, name="start")
cmd_help = rate_limit(meta.cmd_help, name="help")
cmd_metrics = rate_limit(meta.cmd_metrics, name="metrics")

# Monitor
cmd_status = rate_limit(monitor.cmd_status, name="status")
cmd_queues = rate_limit(monitor.cmd_queues, name="queues")
cmd_history = rate_limit(monitor.cmd_history, name="history")
cmd_poll = rate_limit(monitor.cmd_poll, name="poll")
cmd_health = rate_limit(monitor.cmd_health, name="health")

# Alerts
cmd_alertstats = rate_limit(alerts.cmd_alertstats, name="alertstats")
cmd_channels = rate_limit(alerts.cmd_channels, name="channels")
cmd_alertreset = rate_limit(alerts.cmd_alertreset, name="alertreset")
