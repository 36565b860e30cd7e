"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # STORAGE BUCKETS
    # ===================
    uploads_bucket: str = Field(
        default="uploads",
        description="Bucket holding raw uploaded catalog files"
    )
    generated_bucket: str = Field(
        default="generated",
        description="Bucket holding generated marketplace files"
    )
    templates_bucket: str = Field(
        default="marketplace-templates",
        description="Bucket holding marketplace template files"
    )
    signed_url_expiry_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Lifetime of download URLs for generated files"
    )

    # ===================
    # CLAUDE (MAPPING SUGGESTIONS)
    # ===================
    anthropic_api_key: Optional[str] = Field(
        None,
        description="Anthropic API key. Without it the lexical matcher is used"
    )
    suggestion_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Claude model used for column mapping suggestions"
    )
    suggestion_max_tokens: int = Field(
        default=2048,
        ge=256,
        le=16384,
        description="Maximum tokens for a suggestion response"
    )
    suggestion_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Timeout for a single suggestion request"
    )

    # ===================
    # UPLOAD LIMITS
    # ===================
    max_upload_size_mb: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Largest accepted upload in MB"
    )
    max_rows_stored: int = Field(
        default=5000,
        ge=1,
        le=100000,
        description="Maximum data rows stored per upload session"
    )
    row_insert_chunk_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Rows per bulk insert into session_rows"
    )
    rows_page_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Rows per page in row listings"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def claude_configured(self) -> bool:
        """Check if Claude suggestions are available."""
        return bool(self.anthropic_api_key)

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
