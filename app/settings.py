from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


class Settings(BaseSettings):
    store_url: str = "postgresql+psycopg://postgres@localhost:5432/presence"
    store_service_key: str = ""
    app_name: str = "PresenceEngine"
    report_timezone: str = "Asia/Jerusalem"
    snapshot_trigger_tolerance_minutes: int = 0
    snapshot_worker_enabled: bool = False
    snapshot_worker_interval_seconds: int = 60
    schema_guard_strict: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_store_url() -> str:
    settings = get_settings()
    url = make_url(settings.store_url)
    service_key = (settings.store_service_key or "").strip()
    if service_key:
        url = url.set(password=service_key)
    return url.render_as_string(hide_password=False)


def get_snapshot_worker_interval_seconds() -> int:
    return max(15, int(get_settings().snapshot_worker_interval_seconds))


def get_trigger_tolerance_minutes() -> int:
    return max(0, int(get_settings().snapshot_trigger_tolerance_minutes))
