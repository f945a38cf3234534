"""Shared handler helpers: auth guard, rate limit, error replies."""

from __future__ import annotations

import functools
import html
import logging
import time
from typing import TYPE_CHECKING, Callable

from telegram.constants import ParseMode

from .. import config
from ..models.bot_state import BOT_STATE_KEY, MONITOR_KEY, BotState

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from telegram import Update
    from telegram.ext import ContextTypes

    from ..monitor import Monitor


# Global rate limit (seconds) for all commands.
_last_command_ts = 0.0


def get_state(app) -> BotState:
    """Retrieve or initialize the bot state from application data."""
    return app.bot_data.setdefault(BOT_STATE_KEY, BotState())


def get_monitor(app) -> "Monitor | None":
    return app.bot_data.get(MONITOR_KEY)


async def require_monitor(update: "Update", context) -> "Monitor | None":
    monitor = get_monitor(context.application)
    if monitor is None:
        await update.message.reply_text("⚠️ Monitor is not running.")
    return monitor


async def record_error(
    command: str,
    message: str,
    exc: Exception,
    reply,
    log: logging.Logger | None = None,
):
    (log or logger).exception("%s (command=%s)", message, command)
    await reply(f"❌ Error: {html.escape(str(exc))}", parse_mode=ParseMode.HTML)


def allowed(update: "Update") -> bool:
    """Check if the update's chat is on the ALLOWED_CHAT_IDS allowlist.

    Returns False if the allowlist is empty or the update has no chat.
    """
    if not config.ALLOWED:
        return False
    if not update.effective_chat:
        return False
    return update.effective_chat.id in config.ALLOWED


async def guard(update: "Update", context: "ContextTypes.DEFAULT_TYPE") -> bool:
    """Check authorization before executing a command.

    Sends an unauthorized message and returns False when the chat is not allowed.
    """
    if allowed(update):
        return True
    if update and update.effective_chat:
        await update.effective_chat.send_message("⛔ Not authorized")
    return False


def rate_limit(func: Callable, name: str | None = None) -> Callable:
    """Decorator to enforce global rate limiting on command handlers.

    Uses a global timestamp check, so the limit applies across all commands.
    Every call is recorded in the per-command ``CommandMetrics``.
    """

    command_name = name or func.__name__.removeprefix("cmd_")

    @functools.wraps(func)
    async def wrapper(
        update: "Update", context: "ContextTypes.DEFAULT_TYPE", *args, **kwargs
    ):
        global _last_command_ts
        now = time.monotonic()
        elapsed = now - _last_command_ts

        if elapsed < config.RATE_LIMIT_S:
            try:
                if update and getattr(update, "effective_message", None):
                    await update.effective_message.reply_text(
                        f"⏱ Rate limit: please wait {config.RATE_LIMIT_S - elapsed:.1f}s",
                    )
            except Exception as e:
                logger.debug("rate-limit notice failed to send: %s", e)
            get_state(context.application).record_rate_limited(command_name)
            return

        _last_command_ts = now
        start = time.perf_counter()
        try:
            result = await func(update, context, *args, **kwargs)
        except Exception as e:
            get_state(context.application).record_command(
                command_name, time.perf_counter() - start, ok=False, error_msg=str(e)
            )
            raise
        get_state(context.application).record_command(
            command_name, time.perf_counter() - start, ok=True, error_msg=None
        )
        return result

    return wrapper
