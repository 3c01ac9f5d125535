"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (read-only store for profiles, prospects and agent configs)
    database_url: str

    # Telephony provider
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    call_webhook_url: str = "https://localhost/twilio-call-webhook"
    status_callback_url: Optional[str] = None

    # Speech/AI provider
    elevenlabs_api_base_url: str = "https://api.elevenlabs.io/v1"
    signed_url_ttl_seconds: float = 900.0

    # Development calls bypass webhook signature validation; off unless opted in
    allow_development_calls: bool = False

    # Call lifecycle
    status_poll_interval_seconds: float = 5.0
    watch_timeout_seconds: float = 600.0
    provider_request_timeout_seconds: float = 15.0
    status_request_timeout_seconds: float = 10.0
    # Terminal calls stay queryable this long, then are dropped from memory
    terminal_retention_seconds: float = 900.0
    # A call still queued after this long is reported as stuck
    stuck_queue_threshold_seconds: float = 60.0

    # Closed conversation session ids remembered to de-duplicate close requests
    closed_session_history_size: int = 1000

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
