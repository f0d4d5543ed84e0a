from typing import Optional

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from app.bot.handlers import router as handlers_router
from app.core.config import Settings
from app.services.relay import AnonymousRelay


def create_bot(settings: Settings) -> Bot:
    return Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))


def create_dispatcher(settings: Settings, relay: Optional[AnonymousRelay] = None) -> Dispatcher:
    # Handlers read these through aiogram's dependency injection.
    dp = Dispatcher(settings=settings, relay=relay)
    dp.include_router(handlers_router)
    return dp


__all__ = ["create_bot", "create_dispatcher"]
