"""
config.py

Settings for the Procurement Stage Tracker, read from environment variables
(and an optional .env file) by pydantic-settings.

Usage:
    from config import get_settings
    settings = get_settings()     # selected by APP_ENV (default: development)

get_settings() is cached; call get_settings.cache_clear() after changing the
environment at runtime.
"""

import os
from functools import lru_cache
from typing import Dict, List, Optional, Type

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Base settings shared across all environments."""

    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    TESTING: bool = False

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    RELOAD: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "readable"   # readable | json

    # Comma-separated list, "*" allows any origin
    CORS_ORIGINS: str = "*"

    # Headers set by the authenticating proxy / session layer
    ACTOR_HEADER: str = "X-User-Id"
    ADMIN_HEADER: str = "X-User-Admin"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


class DevelopmentSettings(Settings):
    DEBUG: bool = True
    RELOAD: bool = True
    LOG_LEVEL: str = "DEBUG"


class TestingSettings(Settings):
    ENVIRONMENT: str = "testing"
    TESTING: bool = True
    LOG_LEVEL: str = "WARNING"


class ProductionSettings(Settings):
    ENVIRONMENT: str = "production"
    HOST: str = "0.0.0.0"
    LOG_FORMAT: str = "json"


settings_classes: Dict[str, Type[Settings]] = {
    "development": DevelopmentSettings,
    "testing": TestingSettings,
    "production": ProductionSettings,
}


def settings_for(name: Optional[str] = None) -> Settings:
    """Build fresh settings for `name`, or for APP_ENV when omitted."""
    name = name or os.getenv("APP_ENV", "development")
    return settings_classes.get(name, DevelopmentSettings)()


@lru_cache
def get_settings() -> Settings:
    return settings_for()
