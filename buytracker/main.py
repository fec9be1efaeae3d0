"""Application entrypoint."""

from __future__ import annotations

import asyncio
import signal
from decimal import Decimal

import aiohttp
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import BotCommand, BotCommandScopeDefault
from telegram.ext import ApplicationBuilder

from buytracker.config import load_settings
from buytracker.delivery import TelegramDelivery
from buytracker.errors import StartError
from buytracker.feeds.rpc import ChainRpcClient
from buytracker.feeds.simulated import SimulatedFeedFactory
from buytracker.handlers.commands import HandlerContext, setup as setup_handlers
from buytracker.models import WatchKey
from buytracker.resolver import TokenResolver
from buytracker.store.db import Database
from buytracker.store.repository import Repository
from buytracker.utils.logging import configure_logging, get_logger
from buytracker.watch.manager import WatchLifecycleManager
from buytracker.watch.registry import WatchRegistry

logger = get_logger(__name__)

COMMANDS = [
    BotCommand("setup", "Configure token tracking in this group"),
    BotCommand("status", "Show current tracking status"),
    BotCommand("stop", "Stop token tracking"),
    BotCommand("help", "Show what I can do"),
]


async def restore_watches(db: Database, manager: WatchLifecycleManager) -> int:
    """Start a watch for every active stored configuration."""
    async with db.session() as session:
        entries = await Repository(session).list_active_group_configs()

    restored = 0
    for chat_id, config in entries:
        try:
            await manager.start(WatchKey(chat_id, config.token_address), config)
        except StartError as exc:
            logger.error(
                "watch_restore_failed",
                chat_id=chat_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            continue
        restored += 1
    logger.info("watches_restored", restored=restored, configured=len(entries))
    return restored


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_file)

    db = Database(settings.database_url)
    db.connect()
    await db.init_models()

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    await application.initialize()
    await application.bot.set_my_commands(COMMANDS, scope=BotCommandScopeDefault())

    http = aiohttp.ClientSession()
    scheduler = AsyncIOScheduler()
    scheduler.start()

    rpc = ChainRpcClient(http, settings.rpc_urls, settings.http_timeout_seconds)
    feed_factory = SimulatedFeedFactory(
        scheduler=scheduler,
        native_prices_usd=settings.native_prices_usd,
        rpc=rpc,
        probability=settings.simulation_probability,
        interval_seconds=settings.feed_poll_seconds,
        max_failures=settings.feed_max_failures,
    )
    manager = WatchLifecycleManager(
        registry=WatchRegistry(),
        resolver=TokenResolver(
            http, settings.dexscreener_api, settings.http_timeout_seconds
        ),
        feed_factory=feed_factory,
        delivery=TelegramDelivery(
            application.bot,
            default_image=str(settings.default_image_url)
            if settings.default_image_url
            else None,
        ),
        explorer_urls=settings.explorer_urls,
        min_usd=Decimal(str(settings.min_buy_usd)),
    )

    setup_handlers(
        application,
        HandlerContext(db=db, manager=manager, admin_ids=settings.admin_user_ids),
    )

    try:
        await restore_watches(db, manager)

        await application.start()
        if application.updater:
            await application.updater.start_polling()

        logger.info("bot_started", commands=len(COMMANDS))

        stop_event = asyncio.Event()

        def signal_handler(signum, frame):
            logger.info("shutdown_signal_received", signal=signum)
            stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await stop_event.wait()

    finally:
        logger.info("bot_stopping")
        await manager.shutdown()
        scheduler.shutdown(wait=False)
        if application.updater and application.updater.running:
            await application.updater.stop()
        if application.running:
            await application.stop()
        await application.shutdown()
        await http.close()
        await db.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
