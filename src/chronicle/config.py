"""Configuration management for Chronicle."""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from chronicle import constants


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL
    postgres_dsn: str | None = Field(default=None, description="PostgreSQL connection string")

    # Anthropic (text classification)
    anthropic_api_key: SecretStr | None = Field(
        default=None, description="Anthropic API key for content classification"
    )
    classifier_model: str = Field(
        default=constants.DEFAULT_CLASSIFIER_MODEL, description="Model used for classification"
    )
    classifier_max_tokens: int = Field(default=constants.DEFAULT_CLASSIFIER_MAX_TOKENS, gt=0)
    classifier_temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    project_suggestion_max_tokens: int = Field(default=300, gt=0)

    # Project cache and resolution
    project_cache_ttl_seconds: float = Field(default=constants.PROJECT_CACHE_TTL_SECONDS, gt=0)
    client_folder_markers: Annotated[
        list[str],
        Field(
            default_factory=lambda: ["Clients"],
            description="Path segments whose child folder names a client project",
        ),
    ]
    code_projects_folder: str = Field(
        default="Code Projects", description="Path segment holding one folder per code project"
    )
    code_projects_fallback: str = Field(
        default="Code Projects", description="Project used when no code project folder matches"
    )
    generic_fallback_projects: Annotated[
        list[str],
        Field(default_factory=lambda: ["Personal", "Admin", "General"]),
    ]
    project_folder_aliases: Annotated[
        dict[str, str],
        Field(default_factory=dict, description="Folder name -> project name overrides"),
    ]
    meeting_folder_markers: Annotated[
        list[str],
        Field(
            default_factory=lambda: ["Meetings", "Granola"],
            description="Path fragments marking notes as meeting notes",
        ),
    ]
    fuzzy_min_text_length: int = Field(default=constants.FUZZY_MIN_TEXT_LENGTH, ge=0)
    project_suggestion_min_confidence: float = Field(
        default=constants.PROJECT_SUGGESTION_MIN_CONFIDENCE, ge=0.0, le=1.0
    )

    # Duplicate detection
    duplicate_cache_ttl_seconds: float = Field(
        default=constants.DUPLICATE_CACHE_TTL_SECONDS, gt=0
    )
    duplicate_cache_max_entries: int = Field(default=constants.DUPLICATE_CACHE_MAX_ENTRIES, gt=0)
    duplicate_cache_evict_count: int = Field(default=constants.DUPLICATE_CACHE_EVICT_COUNT, gt=0)
    duplicate_similarity_threshold: float = Field(
        default=constants.DUPLICATE_SIMILARITY_THRESHOLD, ge=0.0, le=1.0
    )
    duplicate_time_window_days: int = Field(default=constants.DUPLICATE_TIME_WINDOW_DAYS, gt=0)
    duplicate_fetch_limit: int = Field(default=constants.DUPLICATE_FETCH_LIMIT, gt=0)
    synonym_matching_enabled: bool = Field(default=True)
    synonym_boost: float = Field(default=constants.SYNONYM_BOOST, ge=0.0, le=1.0)

    # Significance
    significance_threshold: float = Field(
        default=constants.SIGNIFICANCE_THRESHOLD, ge=0.0, le=1.0
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
