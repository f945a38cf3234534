from __future__ import annotations

from telegram.constants import ParseMode

from .. import view
from ..commands import COMMANDS, GROUP_ORDER
from .common import get_monitor, get_state, guard


def _render_help() -> str:
    by_group: dict[str, list[str]] = {}
    for spec in COMMANDS:
        line = f"{spec.usage} – {spec.description}"
        by_group.setdefault(spec.group, []).append(line)
    lines: list[str] = ["Hi! Commands:\n"]
    for group in GROUP_ORDER:
        entries = by_group.get(group, [])
        if not entries:
            continue
        lines.append(group)
        lines.extend(entries)
        lines.append("")
    return "\n".join(lines).strip()


async def cmd_start(update, context) -> None:
    if not await guard(update, context):
        return
    await update.message.reply_text(_render_help())


async def cmd_help(update, context) -> None:
    await cmd_start(update, context)


async def cmd_metrics(update, context) -> None:
    if not await guard(update, context):
        return
    state = get_state(context.application)
    parts = [view.render_command_metrics(state.command_metrics)]
    monitor = get_monitor(context.application)
    if monitor is not None:
        parts.insert(0, view.render_poll_metrics(monitor.metrics))
    for part in view.chunk("\n\n".join(parts)):
        await update.message.reply_text(part, parse_mode=ParseMode.HTML)
