"""
Configuration — loads all settings from environment variables.
Every value has a safe default so the formatter works with no environment at all.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HTTPSINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Formatting ───────────────────────────────────────────────────────────
    render_message: bool = False
    type_tag_name: str = "$type"

    # ── Delivery ─────────────────────────────────────────────────────────────
    request_uri: str = "http://localhost:8080/logs"
    timeout_seconds: float = 10.0

    # ── Retry ─────────────────────────────────────────────────────────────────
    max_retries: int = 2
    retry_delay_seconds: float = 1.0

    # ── Diagnostics ──────────────────────────────────────────────────────────
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
