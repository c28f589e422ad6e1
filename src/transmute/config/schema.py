"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from various sources (environment, files, programmatic) into the correct
types with proper defaults.
"""

from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from transmute.core.providers import Provider

_DEFAULT_USER_AGENT = "transmute/1.0"


class TransmuteSettings(BaseSettings):
    """Pydantic settings schema for transmute configuration.

    This handles validation, type coercion, and default values for all
    configuration fields. It integrates with environment variables using
    the TRANSMUTE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRANSMUTE_",
        env_file=None,  # Only used when explicitly requested
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars for forward compatibility
    )

    # --- Provider defaults (opaque to the pipeline) ---

    default_provider: Provider = Field(
        default=Provider.OPENAI,
        description="Provider used when a transformer does not pick one",
    )
    default_model: str | None = Field(
        default=None,
        description="Model override; falls back to the provider's default model",
    )

    # --- Content fetching ---

    fetch_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout (s)")
    fetch_connect_timeout: float = Field(
        default=10.0, gt=0, description="HTTP connect timeout (s)"
    )
    fetch_max_redirects: int = Field(default=5, ge=0)
    fetch_user_agent: str = Field(default=_DEFAULT_USER_AGENT, min_length=1)
    fetch_retry_attempts: int = Field(
        default=3, ge=1, description="Total attempts for transient failures"
    )
    fetch_retry_delay_ms: int = Field(default=1000, ge=0)
    fetch_retry_backoff: float = Field(
        default=1.0, ge=1.0, description="Delay multiplier per retry (1.0 = fixed)"
    )
    allowed_schemes: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("http", "https")
    )
    blocked_domains: Annotated[tuple[str, ...], NoDecode] = Field(default=())
    allow_localhost: bool = False
    max_content_length: int = Field(default=10 * 1024 * 1024, ge=1)

    # --- Caching ---

    cache_enabled: bool = Field(default=True, description="Master cache switch")
    cache_store: str = Field(
        default="memory", description="'memory' or a redis:// URL", min_length=1
    )
    cache_prefix: str = Field(default="transmute", min_length=1)
    content_fetch_cache_enabled: bool = True
    content_fetch_ttl: int = Field(default=1800, ge=1)
    result_cache_enabled: bool = True
    result_ttl: int = Field(default=3600, ge=1)

    # --- Rate limiting ---

    rate_limit_enabled: bool = False
    rate_limit_max_attempts: int = Field(default=60, ge=1)
    rate_limit_decay_seconds: int = Field(default=60, ge=1)
    rate_limit_key_prefix: str = Field(default="transmute_rate_limit", min_length=1)

    # --- Async queue ---

    queue_name: str = Field(default="default", min_length=1)
    queue_connection: str | None = None
    job_timeout: int = Field(default=60, ge=1)
    job_tries: int = Field(default=3, ge=1)
    job_delay: int = Field(default=0, ge=0)

    # --- Validation Rules ---

    @field_validator("default_provider", mode="before")
    @classmethod
    def parse_provider(cls, v: Any) -> Provider:
        """Parse provider from string or enum value."""
        return Provider.parse(v)

    @field_validator("allowed_schemes", "blocked_domains", mode="before")
    @classmethod
    def split_csv(cls, v: Any) -> Any:
        """Accept comma-separated strings (env vars) as well as sequences."""
        if isinstance(v, str):
            return tuple(item.strip() for item in v.split(",") if item.strip())
        return v

    @field_validator("allowed_schemes", "blocked_domains")
    @classmethod
    def lowercase_entries(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Normalize list entries to lowercase for case-insensitive matching."""
        return tuple(item.strip().lower() for item in v if item.strip())

    @model_validator(mode="after")
    def validate_schemes(self) -> "TransmuteSettings":
        """Ensure at least one URL scheme is allowed."""
        if not self.allowed_schemes:
            raise ValueError("allowed_schemes must contain at least one scheme")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary suitable for SourceMap annotation.

        Returns:
            Dictionary with field names as keys and resolved values.
        """
        return {name: getattr(self, name) for name in type(self).model_fields}


def default_values() -> dict[str, Any]:
    """Schema defaults, without reading the environment."""
    return {
        name: field.get_default(call_default_factory=True)
        for name, field in TransmuteSettings.model_fields.items()
    }
