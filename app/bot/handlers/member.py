from __future__ import annotations

from aiogram import Router, types
from aiogram.filters import Command

from app.bot.utils import check_rate_limit, ensure_sender, log_handler_exception
from app.core.config import Settings
from app.db import get_session, repo
from app.services import credentials, raffle_flow
from app.services.errors import ServiceError

router = Router()


@router.message(Command("mygiftee"))
async def my_giftee_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "mygiftee"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    if message.chat.type != "private":
        await message.answer("Ask me in a private chat so your giftee stays secret.")
        return

    tokens = message.text.split()
    raffle_identifier = tokens[1] if len(tokens) > 1 else None

    try:
        with get_session() as session:
            raffle = raffle_flow.resolve_user_raffle(session, message.from_user.id, raffle_identifier)
            if raffle is None:
                await message.answer(
                    "I couldn't tell which Secret Santa you mean. Use /mygiftee <raffle id> (see /token)."
                )
                return
            user = ensure_sender(session, message.from_user)
            assignment = raffle_flow.get_my_assignment(session, raffle.id, user.id)
            title = raffle.title or f"#{raffle.id}"

        await message.answer(f"{title}: you're giving a gift to {assignment.receiver_name}.")
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("mygiftee", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.message(Command("token"))
async def token_handler(message: types.Message, settings: Settings) -> None:
    if not check_rate_limit(message.from_user.id, "token"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    if message.chat.type != "private":
        await message.answer("Chat credentials are only sent in a private chat.")
        return

    try:
        with get_session() as session:
            user = ensure_sender(session, message.from_user)
            token = credentials.issue_token(session, user.id, days_valid=settings.access_token_ttl_days)
            raffles = [
                f"#{raffle.id} {raffle.title or ''}".rstrip()
                for raffle in repo.list_raffles_for_user(session, user.id)
            ]

        lines = [
            "Your anonymous chat credential:",
            f"<code>{token}</code>",
            f"(valid for {settings.access_token_ttl_days} days, keep it private)",
        ]
        if raffles:
            lines.append("")
            lines.append("Your raffles:")
            lines.extend(raffles)
        await message.answer("\n".join(lines))
    except Exception as exc:
        log_handler_exception("token", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")
