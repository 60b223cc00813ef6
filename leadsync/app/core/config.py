import json
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_overrides(raw: Any) -> dict[str, dict[str, Any]]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k).strip().lower(): dict(v) for k, v in raw.items()}

    raw = str(raw).strip()
    if not raw or raw == "{}":
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"RATE_LIMIT_OVERRIDES must be a JSON object: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("RATE_LIMIT_OVERRIDES must be a JSON object")

    overrides: dict[str, dict[str, Any]] = {}
    for name, values in parsed.items():
        if not isinstance(values, dict):
            raise ValueError(f"Override for service '{name}' must be an object")
        overrides[str(name).strip().lower()] = values
    return overrides


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Token bucket settings
    rate_limit_window_ms: int = 1000
    rate_limit_min_batch_size: int = 5
    rate_limit_default_service: str = "database"  # Profile for unknown services

    # Per-service overrides, e.g. {"lemlist": {"requests_per_second": 4}}
    # NoDecode so the JSON is parsed by our own validator with a clear error.
    rate_limit_overrides: Annotated[dict[str, dict[str, Any]], NoDecode] = {}

    @field_validator("rate_limit_overrides", mode="before")
    @classmethod
    def decode_rate_limit_overrides(cls, v: Any) -> dict[str, dict[str, Any]]:
        return _parse_overrides(v)

    # Exponential backoff settings
    backoff_base_delay_ms: int = 1000
    backoff_max_delay_ms: int = 30000  # Hard cap on a single backoff sleep

    # Bulk operation settings
    bulk_max_retries: int = 3
    progress_log_interval_seconds: float = 10.0

    # Request queue settings
    request_queue_max_attempts: int = 5
    request_queue_default_retry_after: float = 2.0  # Seconds, when Retry-After is missing

    # Event key registry
    event_key_cache_size: int = 10000

    # HTTP client settings for rate-limited clients
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 30.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 10

    @field_validator("httpx_connect_timeout", "httpx_read_timeout", "httpx_write_timeout", "httpx_pool_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator(
        "rate_limit_window_ms",
        "rate_limit_min_batch_size",
        "backoff_base_delay_ms",
        "backoff_max_delay_ms",
        "bulk_max_retries",
        "request_queue_max_attempts",
        "event_key_cache_size",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate integer settings are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("progress_log_interval_seconds", "request_queue_default_retry_after")
    @classmethod
    def validate_non_negative_seconds(cls, v: float) -> float:
        """Validate durations are not negative."""
        if v < 0:
            raise ValueError("duration must not be negative")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is one of the supported formatters."""
        value = v.strip().lower()
        if value not in ("text", "structured", "json"):
            raise ValueError("log_format must be text, structured or json")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
