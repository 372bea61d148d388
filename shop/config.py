"""Runtime configuration for the app (loaded from the environment, swappable in tests)."""
import logging
import os
from typing import NamedTuple


class Settings(NamedTuple):
    database_url: str = "sqlite:///./shop.db"
    secret_key: str = "dev-secret"
    cookie_name: str = "user"
    token_ttl_seconds: int = 60 * 60 * 24  # 1 day
    db_timeout_seconds: int = 10
    log_level: str = "INFO"
    default_page_size: int = 10
    max_page_size: int = 100
    leaderboard_size: int = 10


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./shop.db"),
        secret_key=os.getenv("SECRET_KEY", "dev-secret"),
        cookie_name=os.getenv("COOKIE_NAME", "user"),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", str(60 * 60 * 24))),
        db_timeout_seconds=int(os.getenv("DB_TIMEOUT_SECONDS", "10")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "10")),
        max_page_size=int(os.getenv("MAX_PAGE_SIZE", "100")),
        leaderboard_size=int(os.getenv("LEADERBOARD_SIZE", "10")),
    )


state = load_settings()


def set_settings(value: Settings):
    global state
    state = value


def get_settings() -> Settings:
    return state


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("shop")
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
