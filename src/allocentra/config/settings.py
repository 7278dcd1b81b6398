"""
Application settings using Pydantic.

Provides environment-based configuration loading with ALLOCENTRA_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "postgresql+psycopg://localhost/allocentra"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    # Environment
    environment: str = "development"

    # API
    api_prefix: str = "/api"
    cors_origins: list[str] = []

    # Engine
    engine_version: str = "0.1.0"
    default_partial_allocation: bool = True
    lock_timeout_seconds: float = 0.0
    persist_timeout_seconds: float = 30.0
    retry_after_seconds: int = 2

    # Audit
    audit_page_size: int = 500

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "ALLOCENTRA_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
