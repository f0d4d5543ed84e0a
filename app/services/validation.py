from __future__ import annotations

import re
from typing import Pattern, Sequence

from app.services.errors import ValidationError

MAX_MESSAGE_LENGTH = 5000

BANNED_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"(?i)\b(union\s+select|select\s+\*\s+from|insert\s+into|drop\s+table|delete\s+from|exec(ute)?\s*\()"),
    re.compile(r"(?i)(<script|<iframe|<object|<embed|<img[^>]*onerror|javascript:)"),
    re.compile(r"(;.*\||\$\{|`)"),
)


def sanitize(content: str) -> str:
    return content.replace("\x00", "").strip()


def validate_message(content, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    if not isinstance(content, str):
        raise ValidationError("Message content must be a string.")

    content = sanitize(content)
    if not content:
        raise ValidationError("Message cannot be empty.")
    if len(content) > max_length:
        raise ValidationError(f"Message is too long (max {max_length} characters).")
    for pattern in BANNED_PATTERNS:
        if pattern.search(content):
            raise ValidationError("Message contains prohibited content.")
    return content
