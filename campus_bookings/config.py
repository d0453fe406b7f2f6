"""
This module contains the configuration for the campus bookings service.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service settings, read from the environment or a `.env` file.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+aiosqlite:///campus-bookings.db")
    database_echo: bool = Field(default=False)

    celery_broker_url: str = Field(default="redis://localhost:6379/0")
    celery_result_backend: str = Field(default="db+sqlite:///campus-bookings.db")

    jwt_secret: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")

    log_level: str = Field(default="INFO")

    # 0 keeps every transaction in the revenue report
    recent_transactions_limit: int = Field(default=0, ge=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
