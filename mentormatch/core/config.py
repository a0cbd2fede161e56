"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB (must be a replica set for multi-document transactions)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "mentormatch"

    # Per-call deadline for the document store
    store_timeout_seconds: float = 10.0

    # Bounded admin batches
    batch_size: int = 500

    # Capacity rules
    max_capacity_limit: int = 50
    default_max_capacity: int = 5
    limited_capacity_ratio: float = 0.8

    # JWT Auth (tokens are issued elsewhere, we only verify them)
    jwt_secret_key: str = "change-this-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440

    # App
    log_level: str = "INFO"
    debug: bool = False

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
