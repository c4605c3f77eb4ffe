"""
Configuration management for the Mock Examiner engine.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
Provider credentials and model names live here and are injected into the grading
orchestrator and gateway at construction time.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Both provider keys are optional: without a grader key every answer is
    marked locally, and without a tutor key explanations fall back to
    templated text.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Strict Grader (OpenAI-compatible endpoint)
    # ==========================================================================
    grader_api_key: str | None = Field(
        default=None,
        description="API key for the strict grading provider",
    )

    grader_base_url: str = Field(
        default="https://ai.hackclub.com/proxy/v1",
        description="Base URL for the grading provider",
    )

    grader_model: str = Field(
        default="moonshotai/kimi-k2-thinking",
        description="Primary model used for strict grading",
    )

    grader_fallback_model: str = Field(
        default="qwen/qwen3-32b",
        description="Secondary model tried once when the primary grader fails",
    )

    grader_temperature: float = Field(default=0.2, ge=0.0, le=1.0)

    # ==========================================================================
    # Tutor (OpenAI-compatible endpoint)
    # ==========================================================================
    tutor_api_key: str | None = Field(
        default=None,
        description="API key for the tutor / extraction provider",
    )

    tutor_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL for the tutor provider",
    )

    tutor_model: str = Field(
        default="google/gemini-2.0-flash-001",
        description="Model used for explanations and paper extraction",
    )

    tutor_temperature: float = Field(default=0.3, ge=0.0, le=1.0)

    tutor_max_tokens: int = Field(default=1200, ge=64)

    extraction_max_tokens: int = Field(default=16384, ge=256)

    # ==========================================================================
    # Retry / Backoff
    # ==========================================================================
    retry_max_attempts: int = Field(default=3, ge=1, le=10)

    retry_base_delay: float = Field(
        default=1.0,
        gt=0.0,
        description="Base backoff delay in seconds",
    )

    retry_max_delay: float = Field(
        default=10.0,
        gt=0.0,
        description="Upper bound for a single backoff delay in seconds",
    )

    # ==========================================================================
    # Session Storage
    # ==========================================================================
    storage_directory: Path = Field(
        default=Path("./.mock_examiner"),
        description="Directory holding the persisted session snapshot",
    )

    session_key: str = Field(
        default="gcse_marker_state",
        min_length=1,
        description="Storage key of the session snapshot",
    )

    # ==========================================================================
    # Paper Processing
    # ==========================================================================
    min_extracted_characters: int = Field(
        default=250,
        ge=0,
        description="Below this much text a paper is treated as scanned",
    )

    log_level: str = Field(default="WARNING")

    @field_validator("grader_base_url", "tutor_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("grader_api_key", "tutor_api_key")
    @classmethod
    def blank_key_is_missing(cls, v: str | None) -> str | None:
        """Treat an empty key as not configured."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_delays(self) -> "Settings":
        """Ensure the backoff cap is not below the base delay."""
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @property
    def has_grader(self) -> bool:
        return self.grader_api_key is not None

    @property
    def has_tutor(self) -> bool:
        return self.tutor_api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
