from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ObserverSettings:
    database_url: str
    service_role_key: Optional[str]
    anon_key: Optional[str] = None
    lookback_days: int = 30
    insight_ttl_days: int = 7
    user_timeout_seconds: float = 60
    user_page_size: int = 500
    dedupe_active_insights: bool = True


def get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not database_url:
        raise RuntimeError(
            "DATABASE_URL or SQLALCHEMY_DATABASE_URL must be set to create the database engine."
        )
    return database_url


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _flag_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> ObserverSettings:
    return ObserverSettings(
        database_url=get_database_url(),
        service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
        anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
        lookback_days=_int_env("OBSERVER_LOOKBACK_DAYS", 30),
        insight_ttl_days=_int_env("OBSERVER_INSIGHT_TTL_DAYS", 7),
        user_timeout_seconds=_int_env("OBSERVER_USER_TIMEOUT_SECONDS", 60),
        user_page_size=_int_env("OBSERVER_USER_PAGE_SIZE", 500),
        dedupe_active_insights=_flag_env("OBSERVER_DEDUPE_ACTIVE", True),
    )


def cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        return ["*"]
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    return origins
