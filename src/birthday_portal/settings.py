from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    api_base_url: str
    api_timeout_seconds: float
    session_store_path: Path
    timezone: str


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _timeout_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number of seconds") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_settings() -> Settings:
    root = Path.cwd()

    token = _required_env("TELEGRAM_BOT_TOKEN")
    api_base_url = os.getenv("BIRTHDAY_API_BASE_URL", "http://localhost:8080/api").strip()
    if not api_base_url.startswith(("http://", "https://")):
        raise ValueError("BIRTHDAY_API_BASE_URL must be an http(s) URL")

    timezone = os.getenv("PORTAL_TIMEZONE", "UTC").strip() or "UTC"
    try:
        ZoneInfo(timezone)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Unknown timezone: {timezone}") from exc

    session_store_path = Path(
        os.getenv("SESSION_STORE_PATH", root / "data" / "sessions.json")
    )

    return Settings(
        telegram_bot_token=token,
        api_base_url=api_base_url,
        api_timeout_seconds=_timeout_env("BIRTHDAY_API_TIMEOUT", 15.0),
        session_store_path=session_store_path,
        timezone=timezone,
    )
