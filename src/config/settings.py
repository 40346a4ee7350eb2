"""
Configuration management for the AI validation pipeline.

All configuration comes from environment variables or .env file.
Azure credentials keep their historical AZURE_OPENAI_* names; pipeline
tuning knobs use the AI_ prefix.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator
from functools import lru_cache

from config.constants import (
    DEFAULT_API_VERSION, DEFAULT_TIMEOUT_MS, MAX_RETRIES,
    DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY, DEFAULT_RETRY_BATCH_SIZE, MAX_RETRY_BATCH_SIZE,
    WAVE_COOLDOWN_SECONDS, SHRINK_FACTOR, MAX_SHRINK_ATTEMPTS,
    MCQ_MAX_TOKENS, QROC_MAX_TOKENS, SALVAGE_MAX_TOKENS, TRUNCATION_MAX_TOKENS,
    QUESTION_CHAR_CAP, OPTION_CHAR_CAP, CASE_CHAR_CAP, DATA_DIR,
)

QROC_MATCH_POLICIES = ("none", "exact", "contains")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AI_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Azure OpenAI
    azure_api_key: str = Field("", validation_alias=AliasChoices("AZURE_OPENAI_API_KEY", "azure_api_key"))
    azure_endpoint: str = Field(
        "", validation_alias=AliasChoices("AZURE_OPENAI_TARGET", "AZURE_OPENAI_ENDPOINT", "azure_endpoint")
    )
    azure_deployment: str = Field(
        "",
        validation_alias=AliasChoices(
            "AZURE_OPENAI_CHAT_DEPLOYMENT", "AZURE_OPENAI_DEPLOYMENT_NAME", "azure_deployment"
        ),
    )
    azure_api_version: str = Field(
        DEFAULT_API_VERSION, validation_alias=AliasChoices("AZURE_OPENAI_API_VERSION", "azure_api_version")
    )
    azure_timeout_ms: int = Field(
        DEFAULT_TIMEOUT_MS, ge=1, validation_alias=AliasChoices("AZURE_OPENAI_TIMEOUT_MS", "azure_timeout_ms")
    )
    azure_max_retries: int = Field(
        MAX_RETRIES, ge=0, validation_alias=AliasChoices("AZURE_OPENAI_MAX_RETRIES", "azure_max_retries")
    )
    force_offline: bool = Field(
        False, validation_alias=AliasChoices("AZURE_OPENAI_FORCE_OFFLINE", "force_offline")
    )

    # Provider budgets (0 disables the limiter)
    tokens_per_minute: int = Field(0, ge=0)
    requests_per_minute: int = Field(0, ge=0)

    # Batching
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    retry_batch_size: int = DEFAULT_RETRY_BATCH_SIZE
    retry_pass: bool = True
    qcm_single: bool = False
    wave_cooldown_seconds: float = Field(WAVE_COOLDOWN_SECONDS, ge=0)
    shrink_factor: float = SHRINK_FACTOR
    max_shrink_attempts: int = Field(MAX_SHRINK_ATTEMPTS, ge=0)

    # Retry backoff
    retry_base_delay: float = Field(1.0, ge=0)
    retry_max_delay: float = Field(60.0, ge=0)

    # Token budgets
    mcq_max_tokens: int = MCQ_MAX_TOKENS
    qroc_max_tokens: int = QROC_MAX_TOKENS
    salvage_max_tokens: int = SALVAGE_MAX_TOKENS
    truncation_max_tokens: int = TRUNCATION_MAX_TOKENS

    # Payload caps
    question_char_cap: int = QUESTION_CHAR_CAP
    option_char_cap: int = OPTION_CHAR_CAP
    case_char_cap: int = CASE_CHAR_CAP

    # Prompt and merge policy
    explanation_style: str = "student"  # "student" or "prof"
    qroc_match_policy: str = "none"
    require_option_explanations: bool = True

    # Storage / logging
    data_dir: str = DATA_DIR
    log_level: str = "INFO"

    # Validators
    @field_validator('batch_size', 'concurrency', 'retry_batch_size')
    @classmethod
    def at_least_one(cls, v: int) -> int:
        """Batch sizes and concurrency never drop below 1."""
        return max(1, v)

    @field_validator('retry_batch_size')
    @classmethod
    def cap_retry_batch_size(cls, v: int) -> int:
        return min(MAX_RETRY_BATCH_SIZE, v)

    @field_validator('shrink_factor')
    @classmethod
    def validate_shrink_factor(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("shrink_factor must be strictly between 0 and 1")
        return v

    @field_validator('qroc_match_policy')
    @classmethod
    def validate_match_policy(cls, v: str) -> str:
        """Validate QROC answer match policy is a supported value."""
        if v.lower() not in QROC_MATCH_POLICIES:
            raise ValueError(f"qroc_match_policy must be one of: {', '.join(QROC_MATCH_POLICIES)}")
        return v.lower()

    def with_overrides(self, **overrides) -> "Settings":
        """Copy with some fields replaced, re-running field validation."""
        return type(self)(**{**self.model_dump(), **overrides})

    @property
    def is_azure_configured(self) -> bool:
        """True when key, endpoint and deployment are all set."""
        return bool(self.azure_api_key and self.azure_endpoint and self.azure_deployment)

    @property
    def ai_enabled(self) -> bool:
        return self.is_azure_configured and not self.force_offline


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from environment."""
    get_settings.cache_clear()
    return get_settings()
