import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    api_url: str
    api_timeout_seconds: int
    api_retries: int
    token_refresh_leeway_seconds: int
    session_lifetime_hours: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///backoffice.db"),
        api_url=_getenv("API_URL", "http://localhost:8000/api"),
        api_timeout_seconds=_getenv_int("API_TIMEOUT_SECONDS", 30),
        api_retries=_getenv_int("API_RETRIES", 2),
        token_refresh_leeway_seconds=_getenv_int("TOKEN_REFRESH_LEEWAY_SECONDS", 5),
        session_lifetime_hours=_getenv_int("SESSION_LIFETIME_HOURS", 8),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "API_URL": s.api_url,
        "API_TIMEOUT_SECONDS": s.api_timeout_seconds,
        "API_RETRIES": s.api_retries,
        "TOKEN_REFRESH_LEEWAY_SECONDS": s.token_refresh_leeway_seconds,
        "SESSION_LIFETIME_HOURS": s.session_lifetime_hours,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # lesson uploads are streamed to the API (50MB)
        "MAX_CONTENT_LENGTH": 50 * 1024 * 1024,
    }
