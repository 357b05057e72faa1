"""
Engine settings, read from BOOKING_* environment variables.
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the availability and booking engine"""

    model_config = SettingsConfigDict(
        env_prefix="BOOKING_",
        env_file=".env",
        extra="ignore",
    )

    # Business clock; "today" and past-time checks use this zone
    TIMEZONE: str = Field(default="America/Sao_Paulo")

    DEFAULT_SERVICE_DURATION_MINUTES: int = Field(default=30)
    CACHE_TTL_SECONDS: int = Field(default=300)

    LOG_LEVEL: str = Field(default="INFO")

    # Collaborators; unset means log only
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    PAYMENT_WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=10.0)
    COLLABORATOR_WORKERS: int = Field(default=4)

    # Scorer used for mode=smart
    SCORER: Literal["heuristic", "llm", "none"] = Field(default="heuristic")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
