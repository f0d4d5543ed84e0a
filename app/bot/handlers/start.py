from aiogram import Router, types
from aiogram.filters import CommandStart

from app.bot.keyboards import join_keyboard
from app.bot.utils import check_rate_limit, ensure_sender, is_admin, log_handler_exception
from app.db import get_session, repo
from app.services import raffle_flow

router = Router()


@router.message(CommandStart())
async def command_start_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "start"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    try:
        if message.chat.type == "private":
            with get_session() as session:
                raffle_flow.register_private_chat(
                    session,
                    message.from_user.id,
                    message.from_user.username,
                    message.from_user.first_name,
                    message.from_user.last_name,
                )

            await message.answer(
                "Hello! I'm your Secret Santa bot!\n\n"
                "Join a raffle from a group that uses me by clicking 'Join Secret Santa!'.\n\n"
                "After the draw use /mygiftee to see who you are gifting, and /token "
                "to get a credential for the anonymous chat with your santa and your giftee."
            )
            return

        with get_session() as session:
            raffle = repo.get_raffle_by_chat_id(session, message.chat.id)
            if raffle is None:
                if not await is_admin(message.bot, message.chat.id, message.from_user.id):
                    await message.answer("Only group admins can start a Secret Santa.")
                    return
                owner = ensure_sender(session, message.from_user)
                raffle_flow.create_raffle(session, owner, message.chat.title, telegram_chat_id=message.chat.id)

        await message.answer(
            "Hello! Please start a private chat with me first (send /start), "
            "then click the button below to join the Secret Santa.",
            reply_markup=join_keyboard(),
        )
    except Exception as exc:
        log_handler_exception("start", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")
