import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    bot_token: str
    database_url: str
    chat_encryption_key: str
    log_level: str
    log_path: str
    web_host: str
    web_port: int
    chat_max_length: int
    access_token_ttl_days: int
    draw_max_attempts: int


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}.") from exc


def load_settings() -> Settings:
    bot_token = os.getenv("BOT_TOKEN")
    database_url = os.getenv("DATABASE_URL")
    chat_encryption_key = os.getenv("CHAT_ENCRYPTION_KEY")
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_path = os.getenv("LOG_PATH", "logs/santa.log")

    if not bot_token:
        raise ValueError("BOT_TOKEN is required. Set it in the environment or .env file.")
    if not database_url:
        raise ValueError("DATABASE_URL is required. Set it in the environment or .env file.")
    if not chat_encryption_key:
        raise ValueError("CHAT_ENCRYPTION_KEY is required. Generate one with Fernet.generate_key().")

    return Settings(
        bot_token=bot_token,
        database_url=database_url,
        chat_encryption_key=chat_encryption_key,
        log_level=log_level,
        log_path=log_path,
        web_host=os.getenv("WEB_HOST", "0.0.0.0"),
        web_port=_int_env("WEB_PORT", 8080),
        chat_max_length=_int_env("CHAT_MAX_LENGTH", 5000),
        access_token_ttl_days=_int_env("ACCESS_TOKEN_TTL_DAYS", 30),
        draw_max_attempts=_int_env("DRAW_MAX_ATTEMPTS", 1000),
    )
