from __future__ import annotations

import asyncio

import uvloop
from aiogram import Bot, Dispatcher
from aiogram.types import BotCommand, BotCommandScopeDefault
from aiohttp import web
from loguru import logger

from app.bot import create_bot, create_dispatcher
from app.core.config import Settings, load_settings
from app.core.logging import setup_logging
from app.db import init_engine
from app.services import encryption
from app.services.relay import AnonymousRelay
from app.web import create_app


USERS_COMMANDS: dict[str, str] = {
    "start": "start",
    "list": "list participants",
    "leave": "leave Secret Santa",
    "draw": "draw names",
    "exclude": "add exclusion",
    "unexclude": "remove exclusion",
    "exclusions": "list exclusions",
    "mygiftee": "show your giftee",
    "token": "anonymous chat credential",
    "reset": "delete Secret Santa",
}


async def set_default_commands(bot: Bot) -> None:
    await bot.set_my_commands(
        [
            BotCommand(command=command, description=description)
            for command, description in USERS_COMMANDS.items()
        ],
        scope=BotCommandScopeDefault(),
    )


async def on_startup(bot: Bot) -> None:
    logger.info("bot starting...")

    await set_default_commands(bot)

    bot_info = await bot.get_me()

    logger.info("Name     - {name}", name=bot_info.full_name)
    logger.info("Username - @{username}", username=bot_info.username)
    logger.info("ID       - {id}", id=bot_info.id)

    states: dict[bool | None, str] = {
        True: "Enabled",
        False: "Disabled",
        None: "Unknown (This's not a bot)",
    }

    logger.info("Groups Mode  - {mode}", mode=states[bot_info.can_join_groups])
    logger.info("Privacy Mode - {mode}", mode=states[not bot_info.can_read_all_group_messages])

    logger.info("bot started")


async def on_shutdown(bot: Bot, dispatcher: Dispatcher) -> None:
    logger.info("bot stopping...")

    await dispatcher.storage.close()

    await bot.session.close()

    logger.info("bot stopped")


async def start_web(settings: Settings, relay: AnonymousRelay) -> web.AppRunner:
    app = create_app(relay, draw_max_attempts=settings.draw_max_attempts)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.web_host, settings.web_port)
    await site.start()
    logger.info("relay listening on {host}:{port}", host=settings.web_host, port=settings.web_port)
    return runner


async def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_path)
    init_engine(settings.database_url)
    encryption.configure(settings.chat_encryption_key)

    relay = AnonymousRelay(max_length=settings.chat_max_length)
    bot = create_bot(settings)
    dp = create_dispatcher(settings, relay)
    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    runner = await start_web(settings, relay)
    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    if not getattr(asyncio, "debug", False):
        uvloop.install()

    asyncio.run(main())
