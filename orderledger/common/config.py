"""
Runtime settings for the order ledger.
Values come from the environment or a local .env file.
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global ledger settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Orders REST API
    API_BASE_URL: str = "http://localhost:3001/api"
    API_TIMEOUT: float = 10.0

    # Pricing defaults
    GST_RATE: float = 0.18
    DELIVERY_CHARGES: float = 50.0
    SURGE_CHARGES: float = 30.0  # Rain/peak day delivery
    FREE_DELIVERY_THRESHOLD: float = 349.0

    # Ledger rules
    MONEY_EPSILON: float = 0.01
    MIN_REFUND_REASON_LENGTH: int = 5

    # Stock
    LOW_STOCK_THRESHOLD: int = 10

    # Recent results and dropped stale events kept for the console
    EVENT_HISTORY_LIMIT: int = 500

    # None means "derive from ENVIRONMENT"
    STRICT_INVARIANTS: Optional[bool] = None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @model_validator(mode="after")
    def default_strict_invariants(self) -> "Settings":
        if self.STRICT_INVARIANTS is None:
            self.STRICT_INVARIANTS = self.ENVIRONMENT != "production"
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
