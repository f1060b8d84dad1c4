"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_BASE_PATH = Path(os.environ.get(
    "CONCILIACAO_BASE_PATH",
    Path.home() / ".conciliacao",
))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Tenant (church) the engine acts for; resolution happens upstream
    tenant_id: str = Field(default="default")

    # Remote store / suggestion service
    use_memory_store: bool = Field(default=True)
    store_api_url: str = Field(default="http://localhost:54321/api/v1")
    store_api_key: Optional[str] = Field(default=None)
    request_timeout_seconds: float = Field(default=30.0)
    read_retry_attempts: int = Field(default=3)

    # Candidate scoring
    suggestion_threshold: int = Field(default=40)

    # Suggestion lifecycle
    high_confidence_score: float = Field(default=0.9)
    regenerate_min_score: float = Field(default=0.7)

    # Candidate pools
    default_period_days: int = Field(default=90)
    search_similarity_threshold: float = Field(default=80.0)
    ignored_description_markers: List[str] = Field(
        default_factory=lambda: ["CONTAMAX"]
    )

    # Storage
    reports_dir: Path = Field(default=APP_BASE_PATH / "reports")

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
