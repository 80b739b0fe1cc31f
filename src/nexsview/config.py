"""Application configuration using pydantic-settings.

Everything has a working default for the public NExS platform; override via
environment variables or a .env file.
"""

from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars not defined in Settings
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 3001
    environment: str = "development"
    log_level: str = "INFO"

    # NExS platform
    platform_url: str = "https://platform.nexs.com"
    request_timeout: float = 30.0

    # How long a cell read waits, once per render, for the eager backend
    # session and for the frame to report its live session. Fails open.
    live_confirm_timeout: float = 3.0

    # How often the view drains agent writes into the frame
    replay_interval_ms: int = 500

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def platform_origin(self) -> str:
        """Origin the embedded frame posts messages from."""
        parts = urlsplit(self.platform_url)
        return f"{parts.scheme}://{parts.netloc}"

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known value."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("platform_url")
    @classmethod
    def validate_platform_url(cls, v: str) -> str:
        """Require an absolute https URL and drop any trailing slash."""
        parts = urlsplit(v)
        if parts.scheme != "https" or not parts.netloc:
            raise ValueError("platform_url must be an absolute https URL")
        return v.rstrip("/")

    @field_validator("request_timeout", "live_confirm_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timeouts must not be negative")
        return v

    @field_validator("replay_interval_ms")
    @classmethod
    def validate_replay_interval(cls, v: int) -> int:
        if v < 50:
            raise ValueError("replay_interval_ms must be at least 50")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the application.
    """
    return Settings()
