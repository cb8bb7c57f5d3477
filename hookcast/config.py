"""Application configuration using Pydantic Settings."""
from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Hookcast API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./hookcast.db"
    db_echo: bool = False

    # Security
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    cron_secret: str = ""

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" for production, "text" for development

    # Server
    server_host: str = "0.0.0.0"
    server_port: int = 8000
    scheduler_enabled: bool = True  # Set False for non-primary workers in horizontal scaling

    # Dispatch runner
    runner_interval_seconds: int = 60
    runner_batch_size: int = 50
    claim_window_seconds: int = 60
    retry_backoff_seconds: int = 300
    max_schedules_per_workspace: int = 5

    # Discord
    discord_timeout: float = 15.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_production_secrets(self) -> None:
        """Raise if production is using placeholder secrets."""
        if not self.is_production:
            return
        weak = {"", "change-me-in-production"}
        if self.jwt_secret in weak:
            raise ValueError("JWT_SECRET must be set to a strong value in production")
        if self.cron_secret in weak:
            raise ValueError("CRON_SECRET must be set to a strong value in production")

    model_config = {"env_prefix": "", "case_sensitive": False}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
