"""
Configuration management for the handwriting tutor backend.

Uses Pydantic Settings for environment variable management and validation.
Every field has a default so the recognition/validation pipeline can run
with nothing set; request signing is the only step that is skipped when its
key is missing.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Handwriting recognition service (MyScript iink)
    myscript_application_key: str = ""
    myscript_hmac_key: Optional[str] = None
    myscript_api_url: str = "https://cloud.myscript.com/api/v4.0/iink"
    myscript_endpoint: Literal["batch", "recognize"] = "batch"

    # Recognition behavior
    recognition_timeout_ms: int = 10_000
    recognition_pause_ms: int = 500
    recognition_debounce_ms: int = 500
    recognition_min_confidence: float = 0.85
    recognition_use_hmac: bool = False
    recognition_max_strokes: int = 50
    recognition_max_sessions: int = 200
    recognition_session_idle_seconds: int = 1800  # 30 minutes

    # Math validation service (UpStudy / CameraMath show-steps)
    validation_api_url: str = "https://api.cameramath.com/v1"
    validation_api_key: str = ""
    validation_timeout_ms: int = 5_000
    validation_enable_caching: bool = True
    validation_cache_ttl_ms: int = 7 * 24 * 60 * 60 * 1000
    validation_debounce_ms: int = 500

    # Retry policy for the validation service
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1_000
    retry_backoff_multiplier: float = 2.0

    # Rate limiting (UpStudy API limit: 30 requests/minute)
    rate_limit_per_minute: int = 30
    rate_limit_window_seconds: int = 60
    redis_url: str = ""  # empty -> in-process limiter

    # Application
    environment: Literal["development", "staging", "production"] = "development"
    backend_port: int = 8000

    # CORS
    cors_origins: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
