"""
Configuration management for the SettleSmart AI webhook service.
Uses pydantic-settings for type-safe configuration with environment variables.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SettleSmart AI Webhooks"
    app_version: str = "1.0.0"
    debug_mode: bool = False
    testing: bool = False
    environment: str = Field(default="development", pattern="^(development|test|staging|production)$")
    app_base_url: str = Field(
        default="https://app.settlesmart.ai",
        description="Fallback origin for links in outgoing emails",
    )
    invitation_origins: str = Field(
        default="",
        description="Comma-separated extra origins allowed to host invitation accept links",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8001
    workers: int = 1
    reload: bool = False

    # Hosted backend (Supabase / PostgREST)
    backend_mode: str = Field(default="supabase", pattern="^(supabase|memory)$")
    supabase_url: str = ""
    supabase_service_role_key: str = Field(default="", description="Service role key for server-side writes")
    backend_timeout: float = 15.0

    # Paystack
    paystack_secret_key: str | None = None

    # Twilio (WhatsApp)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_api_url: str = "https://api.twilio.com/2010-04-01"

    # AI services
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_model: str = "claude-sonnet-4-5-20250514"
    deepgram_api_key: str = Field(default="", description="Deepgram API key for STT")
    deepgram_language: str = Field(default="en", description="Transcription language, or \"auto\" to detect it")

    # Email (Resend)
    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    invitation_from: str = "SettleSmart AI <onboarding@resend.dev>"

    # AWS
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = "eu-west-2"
    aws_s3_bucket: str = "settlesmart-property-images"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_cache_ttl: int = 300

    # Background tasks
    task_workers: int = 2
    task_max_attempts: int = 3
    task_retry_base_seconds: float = 2.0
    task_retry_max_seconds: float = 30.0
    task_completed_id_limit: int = 10_000
    task_dead_letter_limit: int = 1_000

    # Duplicate image detection
    duplicate_similarity_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    max_image_size_bytes: int = 10 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"

    @property
    def allowed_invitation_origins(self) -> set[str]:
        """Origins an invitation accept link may point at."""
        origins = {o.strip().rstrip("/") for o in self.invitation_origins.split(",") if o.strip()}
        origins.add(self.app_base_url.rstrip("/"))
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Export singleton
settings = get_settings()
