from aiogram import Router

from app.bot.handlers import exclusions, member, raffle, start

router = Router()
router.include_router(start.router)
router.include_router(raffle.router)
router.include_router(exclusions.router)
router.include_router(member.router)
