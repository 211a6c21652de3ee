"""
Configuration and settings for the tagline backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageProviderName = Literal["memory", "filesystem", "null", "s3"]


class Settings(BaseSettings):
    """Environment-backed settings, immutable once constructed."""

    model_config = SettingsConfigDict(
        env_prefix="TAGLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")

    # Blob storage provider
    storage_provider: StorageProviderName = Field(default="memory")
    storage_root: Optional[str] = Field(default=None)
    storage_timeout_seconds: float = Field(default=5.0, gt=0)

    # Largest blob a rescan will read for image validation
    max_image_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    # S3-compatible object store
    s3_bucket: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    s3_prefix: str = Field(default="")
    s3_access_key_id: Optional[str] = Field(
        default=None, validation_alias="AWS_ACCESS_KEY_ID"
    )
    s3_secret_access_key: Optional[SecretStr] = Field(
        default=None, validation_alias="AWS_SECRET_ACCESS_KEY"
    )

    # Metadata store (any SQLAlchemy URL)
    database_url: Optional[str] = Field(default=None)

    # Token store (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="tagline:refresh")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Auth
    password: SecretStr
    token_secret: SecretStr
    token_algorithm: str = Field(default="HS256")
    access_token_ttl_minutes: int = Field(default=30, ge=15, le=60)
    refresh_token_ttl_days: int = Field(default=14, ge=1)
    rotate_refresh_tokens: bool = Field(default=True)
    cookie_secure: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
