"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Relay server (python -m livesync)
    RELAY_HOST: str = "0.0.0.0"
    RELAY_PORT: int = 5200
    CORS_ORIGIN: str = "*"
    # Per-connection outbound queue; a participant that falls this far behind starts losing events
    RELAY_OUTBOX_SIZE: int = 1000

    # Relay client: bounded reconnection with exponential backoff (delay * 2^(attempt-1), capped)
    RELAY_URL: str = "ws://localhost:5200/ws/relay"
    RECONNECT_ATTEMPTS: int = 5
    RECONNECT_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 10.0
    # A connection dropped sooner than this counts toward RECONNECT_ATTEMPTS
    RECONNECT_STABLE_SECONDS: float = 5.0
    PING_INTERVAL_SECONDS: float = 20.0
    # join() resolves after this even when not connected yet; connection continues in background
    JOIN_TIMEOUT_SECONDS: float = 10.0
    # After a connect error during join(), wait this much longer before resolving anyway
    JOIN_ERROR_GRACE_SECONDS: float = 2.0

    # Session lock. None = wait forever (a crashed holder is released by the relay on disconnect)
    LOCK_ACQUIRE_TIMEOUT_SECONDS: float | None = None

    # Transcription control
    STT_DEFAULT_LANGUAGE: str = "en-US"
    STT_EXPERIENCE_DURATION_MS: int = 10 * 60 * 1000
    STT_EXPIRY_CHECK_SECONDS: float = 5.0
    STT_FINAL_CONFIDENCE: float = 0.9
    STT_INTERIM_CONFIDENCE: float = 0.8

    # Media transport token endpoint. Empty certificate = tokens disabled.
    TOKEN_URL: str = ""
    TOKEN_APP_ID: str = ""
    TOKEN_APP_CERTIFICATE: str = ""
    TOKEN_EXPIRE_SECONDS: int = 7200
    TOKEN_CACHE_SECONDS: float = 3600.0

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also write to a rotating file.
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # e.g. "logs/relay.log"; empty = console only

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
