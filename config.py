"""Application configuration loaded from the environment."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Icon Vault settings. Every field can be overridden by an env var of the same name."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Storage
    storage_base_path: str = "./data"
    shard_count: int = Field(16, gt=0)

    # Database
    database_url: str = "sqlite:///./icon_vault.db"

    # Uploads
    max_file_size: int = 5 * 1024 * 1024  # 5MB
    max_batch_size: int = 50
    batch_concurrency: int = Field(3, gt=0)

    # Post-upload analysis
    analysis_enabled: bool = True
    analysis_workers: int = Field(1, gt=0)
    analysis_attempts: int = Field(3, gt=0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
