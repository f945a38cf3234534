from __future__ import annotations

import html
import logging

from telegram.constants import ParseMode

from .. import services, view
from .common import guard, record_error, require_monitor

logger = logging.getLogger(__name__)

_ON = {"on", "enable", "enabled", "1", "true"}
_OFF = {"off", "disable", "disabled", "0", "false"}


async def cmd_alertstats(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    stats = await services.alert_statistics(monitor)
    await update.message.reply_text(
        view.render_statistics(stats), parse_mode=ParseMode.HTML
    )


async def cmd_channels(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    args = context.args or []
    if len(args) == 2:
        name, raw = args[0].lower(), args[1].lower()
        if raw not in _ON | _OFF:
            await update.message.reply_text("Usage: /channels <name> on|off")
            return
        enabled = raw in _ON
        if not await services.set_channel(monitor, name, enabled):
            await update.message.reply_text(
                f"❌ Unknown channel: {html.escape(name)}", parse_mode=ParseMode.HTML
            )
            return
        logger.info("Channel %s set to %s via command", name, enabled)
    elif args:
        await update.message.reply_text("Usage: /channels [<name> on|off]")
        return
    await update.message.reply_text(
        view.render_channels(await services.channels(monitor)),
        parse_mode=ParseMode.HTML,
    )


async def cmd_alertreset(update, context) -> None:
    if not await guard(update, context):
        return
    monitor = await require_monitor(update, context)
    if monitor is None:
        return
    try:
        closed = await services.reset_alerts(monitor)
    except Exception as e:
        await record_error(
            "alertreset", "Alert reset failed", e, update.message.reply_text
        )
        return
    await update.message.reply_text(f"✅ Closed {closed} open alert(s).")
