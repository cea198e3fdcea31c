"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    store_url: str | None = None
    seed_file: Path | None = None
    fetch_timeout: float = 8.0
    admin_username: str = "admin"
    admin_password: str = "treewiki"
    auth_ttl_hours: float = 24.0
    debug: bool = False
    app_title: str = "TreeWiki"

    model_config = SettingsConfigDict(
        env_prefix="TREEWIKI_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
