from __future__ import annotations

from typing import Optional

from aiogram import Router, types
from aiogram.enums import ParseMode
from aiogram.filters import Command
from loguru import logger

from app.bot.keyboards import confirm_draw_keyboard
from app.bot.utils import chat_raffle_ids, check_rate_limit, log_handler_exception
from app.core.config import Settings
from app.db import get_session, repo
from app.services import raffle_flow
from app.services.errors import ServiceError
from app.services.relay import AnonymousRelay

router = Router()

NO_RAFFLE = "There is no Secret Santa in this chat yet. An admin can create one with /start."


@router.callback_query(lambda c: c.data == "join")
async def join_callback_handler(query: types.CallbackQuery) -> None:
    if not check_rate_limit(query.from_user.id, "join"):
        await query.answer("You're doing that too often. Please slow down.", show_alert=True)
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, query.from_user, query.message.chat.id)
        if ids is None:
            await query.answer(NO_RAFFLE, show_alert=True)
            return

        raffle_id, user_id = ids
        result = raffle_flow.join_raffle(raffle_id, user_id)
        await query.answer(result.message, show_alert=True)
        if result.added:
            with get_session() as session:
                user = repo.get_user_by_id(session, user_id)
                label = raffle_flow.format_user_label(user)
            await query.message.bot.send_message(
                query.message.chat.id,
                f"{label} joined the Secret Santa!",
            )
    except ServiceError as exc:
        await query.answer(str(exc), show_alert=True)
    except Exception as exc:
        log_handler_exception("join", query.from_user.id, query.message.chat.id, exc)
        await query.answer("Error joining the Secret Santa.", show_alert=True)


@router.message(Command("leave"))
async def leave_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "leave"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, message.from_user, message.chat.id)
        if ids is None:
            await message.answer(NO_RAFFLE)
            return
        raffle_flow.leave_raffle(*ids)
        await message.answer("You have left the Secret Santa.")
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("leave", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.message(Command("list"))
async def list_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "list"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    try:
        with get_session() as session:
            raffle = repo.get_raffle_by_chat_id(session, message.chat.id)
            if not raffle:
                await message.answer(NO_RAFFLE)
                return

            members = raffle_flow.list_members(session, raffle)
            if not members:
                await message.answer("No participants found in this Secret Santa.")
                return

            lines = []
            for member in members:
                label = raffle_flow.format_user_label(member.user)
                suffix = " ✓" if member.user.has_private_chat else ""
                lines.append(f"#{member.id} {label}{suffix}")

            message_text = "Participants in Secret Santa:\n" + "\n".join(lines)
            if raffle.is_drawn:
                message_text += "\n\nNames have been drawn."
            elif any(not member.user.has_private_chat for member in members):
                message_text += (
                    "\n\nNote: Users without a ✓ need to start a private chat with the bot by sending /start."
                )

        await message.answer(message_text)
    except Exception as exc:
        log_handler_exception("list", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.message(Command("draw"))
async def draw_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "draw"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    if message.chat.type not in {"group", "supergroup"}:
        await message.answer("This command can only be used in a group chat.")
        return

    try:
        with get_session() as session:
            raffle = repo.get_raffle_by_chat_id(session, message.chat.id)
            if not raffle:
                await message.answer(NO_RAFFLE)
                return
            if raffle.is_drawn:
                await message.answer("Names have already been drawn for this Secret Santa.")
                return
            owner_telegram_id = raffle.owner.telegram_id

        if owner_telegram_id != message.from_user.id:
            await message.answer("Only the organizer can draw names.")
            return

        await message.answer(
            "Are you sure you want to draw names? This can only be done once.",
            reply_markup=confirm_draw_keyboard(),
        )
    except Exception as exc:
        log_handler_exception("draw", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.callback_query(lambda c: c.data == "confirm_draw")
async def confirm_draw_callback_handler(query: types.CallbackQuery, settings: Settings) -> None:
    if not check_rate_limit(query.from_user.id, "confirm_draw"):
        await query.answer("You're doing that too often. Please slow down.", show_alert=True)
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, query.from_user, query.message.chat.id)
        if ids is None:
            await query.answer(NO_RAFFLE, show_alert=True)
            return

        result = raffle_flow.draw(*ids, max_attempts=settings.draw_max_attempts)

        for giver_telegram_id, receiver_label in result.notifications:
            try:
                await query.message.bot.send_message(
                    giver_telegram_id,
                    f"Secret Santa: You're giving a gift to {receiver_label}!\n\n"
                    "Use /token to chat anonymously with them.",
                    parse_mode=ParseMode.HTML,
                )
            except Exception as exc:  # pragma: no cover - network dependent
                logger.bind(user_id=giver_telegram_id).warning(
                    "Failed to send assignment DM: {error}", error=str(exc)
                )

        await query.answer("Names drawn!", show_alert=True)
        await query.message.bot.send_message(
            query.message.chat.id,
            "Names have been drawn! Check your private messages.",
        )
    except ServiceError as exc:
        await query.answer(str(exc), show_alert=True)
    except Exception as exc:
        log_handler_exception("confirm_draw", query.from_user.id, query.message.chat.id, exc)
        await query.answer("Something went wrong. Please try again later.", show_alert=True)


@router.message(Command("reset"))
async def reset_command_handler(message: types.Message, relay: Optional[AnonymousRelay] = None) -> None:
    if not check_rate_limit(message.from_user.id, "reset"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, message.from_user, message.chat.id)
        if ids is None:
            await message.answer(NO_RAFFLE)
            return
        raffle_flow.delete_raffle(*ids)
        if relay is not None:
            await relay.drop_raffle(ids[0])
        await message.answer(
            "This Secret Santa has been deleted with all its draws, exclusions and chats. "
            "Send /start to create a new one."
        )
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("reset", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")
