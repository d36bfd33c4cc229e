"""
Configuration and settings for the tracker service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackend = Literal["memory", "json", "sql", "firestore"]


class Settings(BaseSettings):
    """Environment-backed settings for both deployment shapes."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Identity provider (JWKS-based bearer tokens)
    auth0_issuer_base_url: Optional[str] = Field(default=None)
    auth0_audience: Optional[str] = Field(default=None)
    auth0_token_signing_alg: str = Field(default="RS256")
    jwks_cache_lifespan: int = Field(default=300, ge=0)

    # CORS allow-list, comma separated. "*" allows any origin.
    allowed_origins: str = Field(default="*")

    # Storage
    storage_backend: Optional[StorageBackend] = Field(default=None)
    data_file: str = Field(default="./data/data.json")
    database_url: Optional[str] = Field(default=None)
    firestore_collection: str = Field(default="snapshots")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # `python -m tracker`
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)

    @property
    def allowed_origin_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def resolve_storage_backend(self, fallback: StorageBackend = "json") -> StorageBackend:
        if self.use_in_memory_backends:
            return "memory"
        if self.storage_backend:
            return self.storage_backend
        if self.database_url:
            return "sql"
        return fallback


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
