from __future__ import annotations

import datetime
import secrets
from typing import Optional

from app.db import User, repo
from app.services.errors import Unauthenticated


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _is_expired(expires_at: Optional[datetime.datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=datetime.timezone.utc)
    return expires_at < _utcnow()


def issue_token(session, user_id: int, days_valid: Optional[int] = 30) -> str:
    token = secrets.token_urlsafe(24)
    expires_at = _utcnow() + datetime.timedelta(days=days_valid) if days_valid else None
    repo.create_access_token(session, user_id, token, expires_at)
    return token


def parse_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def resolve_user(session, token: Optional[str]) -> User:
    if not token:
        raise Unauthenticated("Authentication credential required.")
    access_token = repo.get_access_token(session, token)
    if access_token is None or _is_expired(access_token.expires_at):
        raise Unauthenticated("Invalid or expired credential.")
    return access_token.user
