import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    landing_url: str
    session_duration_days: int
    session_check_url: str
    session_check_timeout: float
    rate_limit_cleanup_interval: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        landing_url=_getenv("LANDING_URL", "http://localhost:3001").rstrip("/"),
        session_duration_days=_getenv_int("SESSION_DURATION_DAYS", 30),
        session_check_url=_getenv("SESSION_CHECK_URL", ""),
        session_check_timeout=_getenv_float("SESSION_CHECK_TIMEOUT", 5.0),
        rate_limit_cleanup_interval=_getenv_float("RATE_LIMIT_CLEANUP_INTERVAL", 60.0),
    )


def is_production(env: str | None) -> bool:
    return (env or "").strip().lower() in ("prod", "production")


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "LANDING_URL": s.landing_url,
        "SESSION_DURATION_DAYS": s.session_duration_days,
        "SESSION_CHECK_URL": s.session_check_url,
        "SESSION_CHECK_TIMEOUT": s.session_check_timeout,
        "RATE_LIMIT_CLEANUP_INTERVAL": s.rate_limit_cleanup_interval,
        # session cookie defaults
        "SESSION_COOKIE_SECURE": is_production(s.env),  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
