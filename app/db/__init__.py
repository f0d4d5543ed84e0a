from app.db.models import (
    AccessToken,
    Assignment,
    Base,
    ChatMessage,
    ChatRole,
    Exclusion,
    Member,
    Raffle,
    RaffleStatus,
    User,
)
from app.db.session import SessionLocal, get_session, init_engine

__all__ = [
    "AccessToken",
    "Assignment",
    "Base",
    "ChatMessage",
    "ChatRole",
    "Exclusion",
    "Member",
    "Raffle",
    "RaffleStatus",
    "User",
    "SessionLocal",
    "get_session",
    "init_engine",
]
