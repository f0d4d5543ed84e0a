from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Callable, ContextManager, Dict, Optional, Protocol, Set

from loguru import logger

from app.db import ChatRole, get_session, repo
from app.services import chat, credentials
from app.services.errors import Unauthenticated, ValidationError
from app.services.rate_limit import RateLimiter
from app.services.validation import MAX_MESSAGE_LENGTH, validate_message

# WebSocket "going away".
RAFFLE_DELETED_CLOSE_CODE = 1001


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...

    async def close(self, *, code: int = 1000, message: bytes = b"") -> Any:
        ...


def parse_frame(raw) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("Invalid message format.") from exc
    if not isinstance(raw, dict):
        raise ValidationError("Invalid message format.")
    return raw


def parse_role(value) -> ChatRole:
    try:
        return ChatRole(value)
    except ValueError as exc:
        raise ValidationError("Role must be 'santa' or 'giftee'.") from exc


def error_frame(error: Exception) -> Dict[str, Any]:
    return {"error": getattr(error, "code", "error"), "message": str(error)}


class AnonymousRelay:
    """Routes chat frames between a santa and their giftee inside one raffle.

    Connections are tracked per raffle and member. A frame is persisted first
    and then pushed only to the two members of its conversation; members that
    are offline pick it up from history on their next connect.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], ContextManager]] = None,
        max_length: int = MAX_MESSAGE_LENGTH,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._session_factory = session_factory or get_session
        self.max_length = max_length
        self.limiter = limiter or RateLimiter(max_calls=20, period_seconds=10)
        self._connections: Dict[int, Dict[int, Set[Connection]]] = defaultdict(lambda: defaultdict(set))

    def authenticate(self, raffle_id: int, credential: Optional[str]) -> int:
        with self._session_factory() as session:
            user = credentials.resolve_user(session, credential)
            member = repo.get_member_for_user(session, raffle_id, user.id)
            if member is None:
                raise Unauthenticated("You are not a member of this raffle.")
            return member.id

    def register(self, raffle_id: int, member_id: int, connection: Connection) -> None:
        self._connections[raffle_id][member_id].add(connection)
        logger.bind(raffle_id=raffle_id, member_id=member_id).info("Relay connection opened")

    def unregister(self, raffle_id: int, member_id: int, connection: Connection) -> None:
        members = self._connections.get(raffle_id)
        if not members:
            return
        connections = members.get(member_id)
        if connections is not None:
            connections.discard(connection)
            if not connections:
                del members[member_id]
        if not members:
            del self._connections[raffle_id]
        logger.bind(raffle_id=raffle_id, member_id=member_id).info("Relay connection closed")

    def connections_for(self, raffle_id: int, member_id: int) -> Set[Connection]:
        members = self._connections.get(raffle_id)
        if not members:
            return set()
        return set(members.get(member_id, ()))

    def is_online(self, raffle_id: int, member_id: int) -> bool:
        return bool(self.connections_for(raffle_id, member_id))

    async def handle_frame(self, raffle_id: int, member_id: int, raw) -> Dict[str, Any]:
        frame = parse_frame(raw)
        role = parse_role(frame.get("role"))
        content = validate_message(frame.get("content"), self.max_length)

        self.limiter.require(f"{raffle_id}:{member_id}")

        with self._session_factory() as session:
            stored = chat.store_message(
                session,
                raffle_id,
                member_id,
                role,
                content,
                message_id=frame.get("id"),
            )
            payload = chat.message_payload(stored.message)

        if not stored.created:
            logger.bind(raffle_id=raffle_id, message_id=payload["id"]).debug("Duplicate frame, re-delivering")
        await self.deliver(raffle_id, payload)
        return payload

    async def deliver(self, raffle_id: int, payload: Dict[str, Any]) -> int:
        delivered = 0
        for member_id in {payload["santa_id"], payload["giftee_id"]}:
            for connection in self.connections_for(raffle_id, member_id):
                try:
                    await connection.send_json(payload)
                    delivered += 1
                except (ConnectionError, RuntimeError) as exc:
                    logger.bind(raffle_id=raffle_id, member_id=member_id).warning(
                        "Dropping dead relay connection: {error}", error=str(exc)
                    )
                    self.unregister(raffle_id, member_id, connection)
        return delivered

    async def drop_raffle(self, raffle_id: int) -> int:
        """Close every connection of a deleted raffle and forget it."""
        members = self._connections.pop(raffle_id, None)
        if not members:
            return 0
        closed = 0
        for member_id, connections in members.items():
            for connection in connections:
                try:
                    await connection.close(code=RAFFLE_DELETED_CLOSE_CODE, message=b"raffle deleted")
                    closed += 1
                except (ConnectionError, RuntimeError) as exc:
                    logger.bind(raffle_id=raffle_id, member_id=member_id).warning(
                        "Failed to close relay connection: {error}", error=str(exc)
                    )
        logger.bind(raffle_id=raffle_id).info("Relay connections dropped: {count}", count=closed)
        return closed
