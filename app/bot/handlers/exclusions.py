from __future__ import annotations

from aiogram import Router, types
from aiogram.filters import Command

from app.bot.utils import chat_raffle_ids, check_rate_limit, log_handler_exception
from app.db import get_session
from app.services import raffle_flow
from app.services.errors import ServiceError

router = Router()

NO_RAFFLE = "There is no Secret Santa in this chat yet. An admin can create one with /start."


def _parse_ids(text: str, expected: int):
    parts = text.split()[1:]
    if len(parts) != expected:
        return None
    try:
        return [int(part.lstrip("#")) for part in parts]
    except ValueError:
        return None


@router.message(Command("exclude"))
async def exclude_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "exclude"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    member_ids = _parse_ids(message.text, 2)
    if member_ids is None:
        await message.answer("Usage: /exclude <participant #> <participant #> (numbers from /list)")
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, message.from_user, message.chat.id)
        if ids is None:
            await message.answer(NO_RAFFLE)
            return
        pair = raffle_flow.add_exclusion(ids[0], ids[1], member_ids[0], member_ids[1])
        await message.answer(
            f"Exclusion #{pair.id} added: #{pair.member_a} and #{pair.member_b} will not gift each other."
        )
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("exclude", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.message(Command("unexclude"))
async def unexclude_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "unexclude"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    exclusion_ids = _parse_ids(message.text, 1)
    if exclusion_ids is None:
        await message.answer("Usage: /unexclude <exclusion #> (numbers from /exclusions)")
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, message.from_user, message.chat.id)
        if ids is None:
            await message.answer(NO_RAFFLE)
            return
        raffle_flow.remove_exclusion(ids[0], ids[1], exclusion_ids[0])
        await message.answer("Exclusion removed.")
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("unexclude", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")


@router.message(Command("exclusions"))
async def exclusions_command_handler(message: types.Message) -> None:
    if not check_rate_limit(message.from_user.id, "exclusions"):
        await message.answer("You're doing that too often. Please slow down.")
        return

    try:
        with get_session() as session:
            ids = chat_raffle_ids(session, message.from_user, message.chat.id)
            if ids is None:
                await message.answer(NO_RAFFLE)
                return
            exclusions = raffle_flow.list_exclusions(session, ids[0], ids[1])

        if not exclusions:
            await message.answer("No exclusions yet. Add one with /exclude.")
            return
        lines = [
            f"#{exclusion.id}: {exclusion.member_a_name} ↔ {exclusion.member_b_name}"
            for exclusion in exclusions
        ]
        await message.answer("Exclusions:\n" + "\n".join(lines))
    except ServiceError as exc:
        await message.answer(str(exc))
    except Exception as exc:
        log_handler_exception("exclusions", message.from_user.id, message.chat.id, exc)
        await message.answer("Something went wrong. Please try again later.")
