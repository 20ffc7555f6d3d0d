from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_OCCUPYING_STATUSES = ("부킹확정", "집행중")


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    timezone: str
    catalog_path: str | None
    occupying_statuses: tuple[str, ...]
    log_level: str


def _get_required_env(name: str) -> str:
    value = os.getenv(name, "").strip().strip('"').strip("'")
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip().strip('"').strip("'")
    return value or None


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _get_optional_env(name)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not items:
        raise RuntimeError(f"Environment variable {name} must list at least one value.")
    return items


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Ad Slot Inventory API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        timezone=_get_optional_env("AD_SLOTS_TIMEZONE") or "Asia/Seoul",
        catalog_path=_get_optional_env("AD_SLOTS_CATALOG_PATH"),
        occupying_statuses=_get_csv_env("AD_SLOTS_OCCUPYING_STATUSES", DEFAULT_OCCUPYING_STATUSES),
        log_level=(_get_optional_env("AD_SLOTS_LOG_LEVEL") or "INFO").upper(),
    )
