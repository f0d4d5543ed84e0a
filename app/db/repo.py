from __future__ import annotations

import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update

from app.db.models import (
    AccessToken,
    Assignment,
    ChatMessage,
    ChatRole,
    Exclusion,
    Member,
    Raffle,
    RaffleStatus,
    User,
)


def get_user_by_telegram_id(session, telegram_id: int) -> Optional[User]:
    return session.scalar(select(User).where(User.telegram_id == telegram_id))


def get_user_by_id(session, user_id: int) -> Optional[User]:
    return session.scalar(select(User).where(User.id == user_id))


def upsert_user(
    session,
    telegram_id: int,
    telegram_username: Optional[str],
    display_name: Optional[str],
) -> User:
    user = get_user_by_telegram_id(session, telegram_id)
    if user:
        user.telegram_username = telegram_username
        user.display_name = display_name
        return user

    user = User(
        telegram_id=telegram_id,
        telegram_username=telegram_username,
        display_name=display_name,
    )
    session.add(user)
    session.flush()
    return user


def get_raffle_by_id(session, raffle_id: int) -> Optional[Raffle]:
    return session.scalar(select(Raffle).where(Raffle.id == raffle_id))


def get_raffle_by_chat_id(session, telegram_chat_id: int) -> Optional[Raffle]:
    return session.scalar(select(Raffle).where(Raffle.telegram_chat_id == telegram_chat_id))


def lock_raffle(session, raffle_id: int) -> Optional[Raffle]:
    return session.scalar(select(Raffle).where(Raffle.id == raffle_id).with_for_update())


def create_raffle(
    session,
    owner_user_id: int,
    title: Optional[str],
    telegram_chat_id: Optional[int] = None,
) -> Raffle:
    raffle = Raffle(owner_user_id=owner_user_id, title=title, telegram_chat_id=telegram_chat_id)
    session.add(raffle)
    session.flush()
    return raffle


def delete_raffle(session, raffle: Raffle) -> None:
    session.delete(raffle)
    session.flush()


def mark_raffle_drawn(session, raffle: Raffle, drawn_at: datetime.datetime) -> None:
    raffle.status = RaffleStatus.DRAWN
    raffle.drawn_at = drawn_at


def get_member(session, raffle_id: int, member_id: int) -> Optional[Member]:
    return session.scalar(
        select(Member).where(and_(Member.raffle_id == raffle_id, Member.id == member_id))
    )


def get_member_for_user(session, raffle_id: int, user_id: int) -> Optional[Member]:
    return session.scalar(
        select(Member).where(and_(Member.raffle_id == raffle_id, Member.user_id == user_id))
    )


def list_members(session, raffle_id: int) -> List[Member]:
    return list(
        session.scalars(select(Member).where(Member.raffle_id == raffle_id).order_by(Member.id)).all()
    )


def count_members(session, raffle_id: int) -> int:
    return session.scalar(select(func.count()).select_from(Member).where(Member.raffle_id == raffle_id))


def add_member(session, raffle_id: int, user_id: int) -> Optional[Member]:
    if get_member_for_user(session, raffle_id, user_id):
        return None
    member = Member(raffle_id=raffle_id, user_id=user_id)
    session.add(member)
    session.flush()
    return member


def remove_member(session, member: Member) -> None:
    session.execute(
        delete(Exclusion).where(
            or_(Exclusion.member_a_id == member.id, Exclusion.member_b_id == member.id)
        )
    )
    session.delete(member)
    session.flush()


def list_raffles_for_user(session, user_id: int) -> List[Raffle]:
    return list(
        session.scalars(
            select(Raffle).join(Member, Member.raffle_id == Raffle.id).where(Member.user_id == user_id)
        ).all()
    )


def list_exclusions(session, raffle_id: int) -> List[Exclusion]:
    return list(
        session.scalars(
            select(Exclusion).where(Exclusion.raffle_id == raffle_id).order_by(Exclusion.id)
        ).all()
    )


def create_exclusion(session, raffle_id: int, member_a_id: int, member_b_id: int) -> Exclusion:
    low, high = sorted((member_a_id, member_b_id))
    exclusion = Exclusion(raffle_id=raffle_id, member_a_id=low, member_b_id=high)
    session.add(exclusion)
    session.flush()
    return exclusion


def delete_exclusion(session, raffle_id: int, exclusion_id: int) -> int:
    result = session.execute(
        delete(Exclusion).where(and_(Exclusion.id == exclusion_id, Exclusion.raffle_id == raffle_id))
    )
    return result.rowcount or 0


def create_assignments(session, raffle_id: int, assignments: Dict[int, int]) -> None:
    rows = [
        Assignment(raffle_id=raffle_id, giver_member_id=giver_id, receiver_member_id=receiver_id)
        for giver_id, receiver_id in assignments.items()
    ]
    session.add_all(rows)
    session.flush()


def list_assignments(session, raffle_id: int) -> List[Assignment]:
    return list(session.scalars(select(Assignment).where(Assignment.raffle_id == raffle_id)).all())


def count_assignments(session, raffle_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(Assignment).where(Assignment.raffle_id == raffle_id)
    )


def get_receiver_id(session, raffle_id: int, giver_member_id: int) -> Optional[int]:
    return session.scalar(
        select(Assignment.receiver_member_id).where(
            and_(Assignment.raffle_id == raffle_id, Assignment.giver_member_id == giver_member_id)
        )
    )


def get_giver_id(session, raffle_id: int, receiver_member_id: int) -> Optional[int]:
    return session.scalar(
        select(Assignment.giver_member_id).where(
            and_(Assignment.raffle_id == raffle_id, Assignment.receiver_member_id == receiver_member_id)
        )
    )


def get_message(session, message_id: str) -> Optional[ChatMessage]:
    return session.scalar(select(ChatMessage).where(ChatMessage.id == message_id))


def add_message(
    session,
    message_id: str,
    raffle_id: int,
    sender_role: ChatRole,
    santa_id: int,
    giftee_id: int,
    content: str,
    created_at: datetime.datetime,
) -> ChatMessage:
    message = ChatMessage(
        id=message_id,
        raffle_id=raffle_id,
        sender_role=sender_role,
        santa_id=santa_id,
        giftee_id=giftee_id,
        content=content,
        created_at=created_at,
    )
    session.add(message)
    session.flush()
    return message


def _conversation_filter(raffle_id: int, santa_id: int, giftee_id: int):
    return and_(
        ChatMessage.raffle_id == raffle_id,
        ChatMessage.santa_id == santa_id,
        ChatMessage.giftee_id == giftee_id,
    )


def list_conversation(session, raffle_id: int, santa_id: int, giftee_id: int) -> List[ChatMessage]:
    return list(
        session.scalars(
            select(ChatMessage)
            .where(_conversation_filter(raffle_id, santa_id, giftee_id))
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        ).all()
    )


def mark_conversation_read(
    session,
    raffle_id: int,
    santa_id: int,
    giftee_id: int,
    sender_role: ChatRole,
    read_at: datetime.datetime,
) -> int:
    result = session.execute(
        update(ChatMessage)
        .where(
            and_(
                _conversation_filter(raffle_id, santa_id, giftee_id),
                ChatMessage.sender_role == sender_role,
                ChatMessage.read_at.is_(None),
            )
        )
        .values(read_at=read_at)
    )
    return result.rowcount or 0


def count_unread(
    session,
    raffle_id: int,
    santa_id: int,
    giftee_id: int,
    sender_role: ChatRole,
) -> int:
    return session.scalar(
        select(func.count())
        .select_from(ChatMessage)
        .where(
            and_(
                _conversation_filter(raffle_id, santa_id, giftee_id),
                ChatMessage.sender_role == sender_role,
                ChatMessage.read_at.is_(None),
            )
        )
    )


def create_access_token(
    session,
    user_id: int,
    token: str,
    expires_at: Optional[datetime.datetime],
) -> AccessToken:
    access_token = AccessToken(user_id=user_id, token=token, expires_at=expires_at)
    session.add(access_token)
    session.flush()
    return access_token


def get_access_token(session, token: str) -> Optional[AccessToken]:
    return session.scalar(select(AccessToken).where(AccessToken.token == token))
