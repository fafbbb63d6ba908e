"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class SquareEnvironment(str, Enum):
    sandbox = "sandbox"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Square POS
    SQUARE_ENVIRONMENT: SquareEnvironment = SquareEnvironment.sandbox
    SQUARE_ACCESS_TOKEN: str = ""
    SQUARE_API_VERSION: str = "2024-01-18"
    SQUARE_TIMEOUT: float = 30.0

    # Square retry policy
    SQUARE_MAX_RETRIES: int = 3
    SQUARE_RETRY_BASE_DELAY_MS: int = 1000
    SQUARE_RETRY_MAX_DELAY_MS: int = 30000
    SQUARE_RETRY_JITTER_MS: int = 1000

    # Square rate limits: documented ceiling is 100 requests / 10s per token
    SQUARE_RATE_LIMIT_MAX_REQUESTS: int = 80
    SQUARE_RATE_LIMIT_WINDOW_MS: int = 10000

    def get_square_base_url(self) -> str:
        """Return the Square REST base URL for the configured environment."""
        if self.SQUARE_ENVIRONMENT == SquareEnvironment.production:
            return "https://connect.squareup.com/v2"
        return "https://connect.squareupsandbox.com/v2"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
