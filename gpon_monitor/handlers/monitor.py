from __future__ import annotations

import html
import logging

from telegram.constants import ParseMode

from .. import services, view
from .common import guard, record_error, require_monitor

logger = logging.getLogger(__name__)

_DEFAULT_HISTORY_H = 24.0
_MAX_HISTORY_H = 24.0 * 30


async def cmd_status(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    snapshot = await services.tracking_snapshot(monitor)
    msg = "\n\n".join(
        [
            view.render_tracking(snapshot, monitor.clock()),
            view.render_poll_status(monitor.metrics, monitor.scheduler.interval_s),
        ]
    )
    await update.message.reply_text(msg, parse_mode=ParseMode.HTML)


async def cmd_queues(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    try:
        entities = await services.monitored_queues(monitor)
    except Exception as e:
        await record_error("queues", "Queue listing failed", e, update.message.reply_text)
        return
    msg = view.render_entities(entities, monitor.alerts.default_threshold_kb)
    for part in view.chunk(msg):
        await update.message.reply_text(part, parse_mode=ParseMode.HTML)


async def cmd_history(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    if not context.args:
        await update.message.reply_text(
            "<i>Usage:</i> <code>/history &lt;queue&gt; [hours]</code>",
            parse_mode=ParseMode.HTML,
        )
        return
    name = context.args[0]
    hours = _DEFAULT_HISTORY_H
    if len(context.args) > 1:
        try:
            hours = float(context.args[1])
        except ValueError:
            await update.message.reply_text("Invalid hours (must be a number).")
            return
        if hours <= 0:
            await update.message.reply_text("Hours must be positive.")
            return
        hours = min(hours, _MAX_HISTORY_H)
    try:
        points = await services.traffic_history(monitor, name, hours=hours)
    except Exception as e:
        await record_error(
            "history", f"History lookup failed for {name}", e, update.message.reply_text
        )
        return
    for part in view.render_history(name, points, hours):
        await update.message.reply_text(part, parse_mode=ParseMode.HTML)


async def cmd_poll(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    await update.message.reply_text("🔄 Polling router…")
    report = await services.trigger_poll(monitor)
    await update.message.reply_text(
        view.render_cycle_report(report), parse_mode=ParseMode.HTML
    )


async def cmd_health(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    checks = await services.health(monitor)
    msg = view.render_health(checks)
    last = monitor.scheduler.last_report
    if last is not None and not last.ok:
        msg += f"\n<i>Last cycle failed:</i> {html.escape(last.error or '')}"
    await update.message.reply_text(msg, parse_mode=ParseMode.HTML)
