from __future__ import annotations

from typing import Optional, Tuple

from app.db import ChatRole, repo
from app.services.errors import NotDrawnYet


def santa_of(session, raffle_id: int, member_id: int) -> Optional[int]:
    return repo.get_giver_id(session, raffle_id, member_id)


def giftee_of(session, raffle_id: int, member_id: int) -> Optional[int]:
    return repo.get_receiver_id(session, raffle_id, member_id)


def conversation_for(session, raffle_id: int, member_id: int, role: ChatRole) -> Tuple[int, int]:
    """Return ``(santa_id, giftee_id)`` of the conversation ``member_id`` writes into.

    ``santa`` means the member writes to their giftee, ``giftee`` means they
    write to their santa.
    """
    if role == ChatRole.SANTA:
        giftee_id = giftee_of(session, raffle_id, member_id)
        if giftee_id is None:
            raise NotDrawnYet("Names have not been drawn yet.")
        return member_id, giftee_id

    santa_id = santa_of(session, raffle_id, member_id)
    if santa_id is None:
        raise NotDrawnYet("Names have not been drawn yet.")
    return santa_id, member_id


def counterpart(session, raffle_id: int, member_id: int, role: ChatRole) -> int:
    santa_id, giftee_id = conversation_for(session, raffle_id, member_id, role)
    return giftee_id if role == ChatRole.SANTA else santa_id
