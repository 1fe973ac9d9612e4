"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Retry / backoff for step invocations
    WORKFLOW_RETRY_BASE_DELAY_SECONDS: float = 1.0
    WORKFLOW_RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Time bounds
    WORKFLOW_STEP_TIMEOUT_SECONDS: float = 300.0  # per step invocation
    WORKFLOW_EXECUTION_TIMEOUT_SECONDS: float = 900.0  # whole execution, checked between waves

    # Concurrency bounds
    WORKFLOW_MAX_ACTIVE_PER_USER: int = 3
    WORKFLOW_MAX_PARALLEL_STEPS: int = 4
    WORKFLOW_PARALLEL_EXECUTION: bool = True
    WORKFLOW_RUN_IN_BACKGROUND: bool = True

    # Execution record retention
    WORKFLOW_RETENTION_MINUTES: int = 60

    # Trigger detection weights
    WORKFLOW_TRIGGER_PHRASE_WEIGHT: float = 10.0
    WORKFLOW_TRIGGER_KEYWORD_WEIGHT: float = 1.0
    WORKFLOW_TRIGGER_TOPIC_BOOST: float = 0.5
    WORKFLOW_TRIGGER_MIN_SCORE: float = 2.0

    @field_validator("WORKFLOW_RETRY_BASE_DELAY_SECONDS", "WORKFLOW_RETRY_MAX_DELAY_SECONDS")
    @classmethod
    def validate_non_negative_delay(cls, v: float) -> float:
        """Reject negative backoff delays."""
        if v < 0:
            raise ValueError("Retry delays must be non-negative")
        return v

    @field_validator("WORKFLOW_MAX_ACTIVE_PER_USER", "WORKFLOW_MAX_PARALLEL_STEPS")
    @classmethod
    def validate_positive_limit(cls, v: int) -> int:
        """Concurrency limits must allow at least one unit of work."""
        if v < 1:
            raise ValueError("Concurrency limits must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def validate_startup(self) -> None:
        """Validate that the workflow bounds are mutually consistent.

        Raises:
            ValueError: If the retry cap is below the base delay or the
                execution deadline is shorter than a single step timeout.
        """
        if self.WORKFLOW_RETRY_MAX_DELAY_SECONDS < self.WORKFLOW_RETRY_BASE_DELAY_SECONDS:
            raise ValueError(
                "WORKFLOW_RETRY_MAX_DELAY_SECONDS must be >= WORKFLOW_RETRY_BASE_DELAY_SECONDS"
            )
        if self.WORKFLOW_EXECUTION_TIMEOUT_SECONDS < self.WORKFLOW_STEP_TIMEOUT_SECONDS:
            logger.warning(
                "Execution timeout (%.0fs) is shorter than the step timeout (%.0fs)",
                self.WORKFLOW_EXECUTION_TIMEOUT_SECONDS,
                self.WORKFLOW_STEP_TIMEOUT_SECONDS,
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance with validated configuration.

    Raises:
        ValueError: If the configured bounds are inconsistent.
    """
    settings = Settings()
    settings.validate_startup()
    return settings


# Global settings instance - import this for easy access
settings = get_settings()
