"""
Engine settings using pydantic-settings.

Environment variables are prefixed with FHIR_CONFORMANCE_.
"""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from conformance.constants import (
    DEFAULT_FHIR_VERSION,
    MAX_REFERENCE_CHECKS,
    MAX_SEARCH_PAGES,
    REQUEST_TIMEOUT_SECONDS,
)

load_dotenv()


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FHIR_CONFORMANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("fhir_version")
    @classmethod
    def normalize_fhir_version(cls, value: str) -> str:
        """Store FHIR versions lowercased (r4, stu3)."""
        return value.strip().lower()

    # Target server
    fhir_base_url: str | None = None
    patient_id: str | None = None
    bearer_token: str = ""
    fhir_version: str = DEFAULT_FHIR_VERSION

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Request settings
    request_timeout: float = REQUEST_TIMEOUT_SECONDS

    # External profile validator service (e.g. http://localhost:4567)
    validator_url: str | None = None

    # Execution
    max_concurrent_sequences: int = 1
    max_search_pages: int = MAX_SEARCH_PAGES
    max_reference_checks: int = MAX_REFERENCE_CHECKS
    strict_search_matching: bool = False  # Fail on any non-matching search entry


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
