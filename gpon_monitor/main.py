"""Entrypoint for running the traffic monitor.

With a ``BOT_TOKEN`` this wires up the Telegram Application, registers the
command handlers and runs polling; the traffic monitor starts in
``post_init``. Without a token the monitor loop runs headless.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from telegram import BotCommand
from telegram.ext import Application, CommandHandler

from .logger import setup_logging
from . import config
from .commands import COMMANDS
from .handlers import dispatch
from .models.bot_state import BOT_STATE_KEY, MONITOR_KEY, BotState
from .models.settings import Settings
from .background import ensure_started
from .monitor import build_monitor

logger = logging.getLogger(__name__)


def build_application() -> Application:
    if config.TOKEN is None:
        raise RuntimeError("BOT_TOKEN environment variable is not set")

    app = Application.builder().token(config.TOKEN).build()

    app.bot_data.setdefault(BOT_STATE_KEY, BotState())

    for spec in COMMANDS:
        fn = getattr(dispatch, spec.handler)
        triggers = [spec.name, *spec.aliases]
        app.add_handler(CommandHandler(triggers, fn))

    return app


async def register_bot_commands(app: Application) -> None:
    """Register bot commands for Telegram autocomplete."""
    try:
        bot_commands = [BotCommand(spec.name, spec.description) for spec in COMMANDS]
        await app.bot.set_my_commands(bot_commands)
        logger.info("Registered %s commands for autocomplete", len(bot_commands))
    except Exception as e:
        logger.warning("Failed to register bot commands: %s", e)


async def send_startup_notification(app: Application) -> None:
    """Send startup notification to all allowed chat IDs."""
    logger.info("Sending startup notification to %s chat(s)", len(config.ALLOWED))
    if not config.ALLOWED:
        logger.warning("No ALLOWED_CHAT_IDS configured, skipping startup notification")
        return

    startup_msg = (
        f"📡 Traffic monitor started at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
    )
    for chat_id in config.ALLOWED:
        try:
            await app.bot.send_message(chat_id=chat_id, text=startup_msg)
        except Exception as e:
            logger.warning(
                "Failed to send startup notification to chat_id %s: %s", chat_id, e
            )


async def on_startup(app: Application) -> None:
    monitor = build_monitor(config.settings, bot=app.bot)
    app.bot_data[MONITOR_KEY] = monitor
    await monitor.alerts.restore_state()
    try:
        ensure_started(app)
    except Exception as e:
        logger.warning("Failed to start traffic monitor: %s", e)

    await register_bot_commands(app)
    await send_startup_notification(app)


async def on_shutdown(app: Application) -> None:
    monitor = app.bot_data.pop(MONITOR_KEY, None)
    if monitor is not None:
        await monitor.close()


async def run_headless(settings: Settings) -> None:
    """Run the poll loop without a bot until cancelled."""
    monitor = build_monitor(settings)
    await monitor.start()
    try:
        await asyncio.Event().wait()
    finally:
        await monitor.close()


def run() -> None:
    setup_logging()
    logger.info("Starting gpon_monitor")
    missing = config.validate_settings()
    if missing:
        raise SystemExit(f"Missing required configuration: {', '.join(missing)}")

    if config.TOKEN is None:
        try:
            asyncio.run(run_headless(config.settings))
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        return

    app = build_application()
    app.post_init = on_startup
    app.post_shutdown = on_shutdown

    # run polling; keep the stop_signals None so container shutdown behaves normally
    app.run_polling(stop_signals=None)


if __name__ == "__main__":
    run()
