"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Reader configuration loaded from environment variables with USOGUI_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="USOGUI_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    # --- REST collaborator ---
    api_url: str = "http://localhost:3001/api"
    request_timeout_seconds: float = 10.0
    api_token: str | None = None

    # --- Reading progress ---
    max_chapter: int = 539
    min_progress: int = 0

    # --- Reader sessions (HTTP surface) ---
    max_reader_sessions: int = 1024

    # --- Paged resource cache ---
    paged_cache_ttl_seconds: float = 300.0
    paged_cache_max_entries: int = 200
    paged_cache_persist: bool = False
    paged_cache_page_size: int = 20

    # --- Persistent store ---
    storage_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    key_namespace: str = "usogui"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
