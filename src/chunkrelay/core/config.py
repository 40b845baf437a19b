"""Configuration management for the chunk relay service."""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class TransferConfig:
    """Immutable tuning values handed to the transfer components."""

    chunk_size: int = 8 * 1024 * 1024
    max_attempts: int = 3
    retry_delay_seconds: float = 2.0
    activation_base_timeout_seconds: float = 60.0
    activation_seconds_per_mb: float = 0.5
    activation_max_timeout_seconds: float = 300.0
    poll_initial_delay_ms: float = 1000.0
    poll_backoff_factor: float = 1.5
    poll_max_delay_ms: float = 5000.0
    poll_jitter_ms: float = 1000.0
    result_ttl_hours: int = 48
    source_strategy: str = "auto"  # "auto", "range" or "stream"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "chunkrelay"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Upload API (Google Files API resumable protocol)
    UPLOAD_API_BASE_URL: str = "https://generativelanguage.googleapis.com"
    UPLOAD_API_KEY: str = ""

    # Progress sink
    PROGRESS_SINK_URL: str = ""  # Empty = log-only progress
    PROGRESS_SINK_TOKEN: str = ""
    PROGRESS_SUBJECT_FIELD: str = "subjectId"  # "videoId" for sinks keyed on the legacy field

    REQUEST_TIMEOUT: float = 300  # seconds per HTTP call, 0 disables

    # Chunked transfer
    CHUNK_SIZE_MB: int = 8
    CHUNK_MAX_ATTEMPTS: int = 3
    CHUNK_RETRY_DELAY_SECONDS: float = 2.0
    SOURCE_STRATEGY: str = "auto"

    # Activation polling
    ACTIVATION_BASE_TIMEOUT_SECONDS: float = 60.0
    ACTIVATION_SECONDS_PER_MB: float = 0.5
    ACTIVATION_MAX_TIMEOUT_SECONDS: float = 300.0
    POLL_INITIAL_DELAY_MS: float = 1000.0
    POLL_BACKOFF_FACTOR: float = 1.5
    POLL_MAX_DELAY_MS: float = 5000.0
    POLL_JITTER_MS: float = 1000.0

    RESULT_TTL_HOURS: int = 48

    # Request constraints
    ALLOWED_CONTENT_TYPE_PREFIXES: str = ""  # Comma-separated, empty = allow all

    TRANSFER_STORE_MAX_ENTRIES: int = 1000
    CORS_ALLOW_ORIGINS: str = "*"

    @property
    def chunk_size_bytes(self) -> int:
        """Convert CHUNK_SIZE_MB to bytes."""
        return self.CHUNK_SIZE_MB * 1024 * 1024

    @property
    def request_timeout(self) -> float | None:
        """HTTP timeout for httpx clients, None when disabled."""
        return self.REQUEST_TIMEOUT or None

    @property
    def allowed_content_type_prefixes(self) -> list[str] | None:
        """Parse ALLOWED_CONTENT_TYPE_PREFIXES into a list."""
        if not self.ALLOWED_CONTENT_TYPE_PREFIXES:
            return None
        return [p.strip() for p in self.ALLOWED_CONTENT_TYPE_PREFIXES.split(",") if p.strip()]

    @property
    def cors_allow_origins(self) -> list[str]:
        """Parse CORS_ALLOW_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ALLOW_ORIGINS.split(",") if o.strip()]

    def transfer_config(self) -> TransferConfig:
        """Snapshot the transfer tuning values into an immutable config."""
        return TransferConfig(
            chunk_size=self.chunk_size_bytes,
            max_attempts=self.CHUNK_MAX_ATTEMPTS,
            retry_delay_seconds=self.CHUNK_RETRY_DELAY_SECONDS,
            activation_base_timeout_seconds=self.ACTIVATION_BASE_TIMEOUT_SECONDS,
            activation_seconds_per_mb=self.ACTIVATION_SECONDS_PER_MB,
            activation_max_timeout_seconds=self.ACTIVATION_MAX_TIMEOUT_SECONDS,
            poll_initial_delay_ms=self.POLL_INITIAL_DELAY_MS,
            poll_backoff_factor=self.POLL_BACKOFF_FACTOR,
            poll_max_delay_ms=self.POLL_MAX_DELAY_MS,
            poll_jitter_ms=self.POLL_JITTER_MS,
            result_ttl_hours=self.RESULT_TTL_HOURS,
            source_strategy=self.SOURCE_STRATEGY,
        )


# Singleton settings instance
settings = Settings()
