from __future__ import annotations

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

_fernet: Optional[Fernet] = None


def configure(key: str) -> None:
    """Set the Fernet key used for chat content at rest."""
    global _fernet
    try:
        _fernet = Fernet(key)
    except (TypeError, ValueError) as exc:
        raise ValueError("CHAT_ENCRYPTION_KEY must be a urlsafe base64 Fernet key.") from exc


def _ensure_configured() -> Fernet:
    if _fernet is None:
        raise RuntimeError("Chat encryption not configured. Call configure() before use.")
    return _fernet


def encrypt_str(data: str) -> str:
    if not isinstance(data, str):
        raise TypeError("Only text can be encrypted.")
    return _ensure_configured().encrypt(data.encode()).decode()


def decrypt_str(data: str) -> str:
    if not isinstance(data, str):
        raise TypeError("Only text can be decrypted.")
    return _ensure_configured().decrypt(data.encode()).decode()


def decrypt_str_safe(data: str) -> Optional[str]:
    try:
        return decrypt_str(data)
    except (TypeError, ValueError, InvalidToken):
        return None
