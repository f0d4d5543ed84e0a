from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger

from app.db import ChatMessage, ChatRole, repo
from app.services import encryption, routing
from app.services.errors import NotDrawnYet, ValidationError


@dataclass(frozen=True)
class StoredMessage:
    message: ChatMessage
    created: bool


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


UNREADABLE_CONTENT = "[Encrypted message]"


def message_content(message: ChatMessage) -> str:
    content = encryption.decrypt_str_safe(message.content)
    if content is None:
        logger.bind(message_id=message.id).warning("Failed to decrypt message content")
        return UNREADABLE_CONTENT
    return content


def message_payload(message: ChatMessage) -> Dict[str, Any]:
    read_at = _as_utc(message.read_at)
    return {
        "id": message.id,
        "content": message_content(message),
        "santa_id": message.santa_id,
        "giftee_id": message.giftee_id,
        "sender_role": ChatRole(message.sender_role).value,
        "created_at": _as_utc(message.created_at).isoformat(),
        "read_at": read_at.isoformat() if read_at else None,
    }


def normalize_message_id(message_id: Optional[str]) -> str:
    if message_id is None:
        return str(uuid.uuid4())
    try:
        return str(uuid.UUID(str(message_id)))
    except ValueError as exc:
        raise ValidationError("Message id must be a UUID.") from exc


def store_message(
    session,
    raffle_id: int,
    member_id: int,
    role: ChatRole,
    content: str,
    message_id: Optional[str] = None,
) -> StoredMessage:
    """Persist a message once; a repeated id for the same sender is a no-op."""
    santa_id, giftee_id = routing.conversation_for(session, raffle_id, member_id, role)
    message_id = normalize_message_id(message_id)

    existing = repo.get_message(session, message_id)
    if existing is not None:
        same_sender = (
            existing.raffle_id == raffle_id
            and existing.santa_id == santa_id
            and existing.giftee_id == giftee_id
            and ChatRole(existing.sender_role) == role
        )
        if not same_sender:
            raise ValidationError("Message id is already in use.")
        return StoredMessage(existing, created=False)

    message = repo.add_message(
        session,
        message_id=message_id,
        raffle_id=raffle_id,
        sender_role=role,
        santa_id=santa_id,
        giftee_id=giftee_id,
        content=encryption.encrypt_str(content),
        created_at=_utcnow(),
    )
    return StoredMessage(message, created=True)


def _incoming_role(role: ChatRole) -> ChatRole:
    return ChatRole.GIFTEE if role == ChatRole.SANTA else ChatRole.SANTA


def history(
    session,
    raffle_id: int,
    member_id: int,
    role: ChatRole,
    mark_read: bool = True,
) -> List[Dict[str, Any]]:
    """Messages of the conversation where ``member_id`` acts as ``role``.

    Loading the history marks the counterpart's messages as read.
    """
    santa_id, giftee_id = routing.conversation_for(session, raffle_id, member_id, role)
    messages = repo.list_conversation(session, raffle_id, santa_id, giftee_id)
    payloads = [message_payload(message) for message in messages]
    if mark_read:
        repo.mark_conversation_read(
            session, raffle_id, santa_id, giftee_id, _incoming_role(role), _utcnow()
        )
    return payloads


def unread_counts(session, raffle_id: int, member_id: int) -> Dict[str, int]:
    counts = {"unread_from_giftee": 0, "unread_from_santa": 0}
    for role, key in ((ChatRole.SANTA, "unread_from_giftee"), (ChatRole.GIFTEE, "unread_from_santa")):
        try:
            santa_id, giftee_id = routing.conversation_for(session, raffle_id, member_id, role)
        except NotDrawnYet:
            continue
        counts[key] = repo.count_unread(session, raffle_id, santa_id, giftee_id, _incoming_role(role))
    counts["total"] = counts["unread_from_giftee"] + counts["unread_from_santa"]
    return counts
