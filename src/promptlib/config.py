"""Configuration management for Prompt Library."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SQLITE_SCHEME = "sqlite:///"


class ServerSettings(BaseSettings):
    """API server settings loaded from environment with PROMPTLIB_ prefix."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROMPTLIB_",
        extra="ignore",
    )

    # Required: there is no sensible default location for user data
    database_url: str

    secret_key: Optional[str] = None
    session_max_age_days: int = Field(default=30, ge=1)
    pool_size: int = Field(default=10, ge=1, le=100)
    host: str = "127.0.0.1"
    port: int = 8430
    cookie_secure: bool = False

    @field_validator("database_url")
    @classmethod
    def sqlite_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(SQLITE_SCHEME) or len(v) == len(SQLITE_SCHEME):
            raise ValueError("database_url must look like sqlite:///path/to/prompts.db")
        if v.endswith(":memory:"):
            raise ValueError("in-memory databases cannot be shared across the connection pool")
        return v

    @property
    def db_path(self) -> Path:
        return Path(self.database_url[len(SQLITE_SCHEME):])

    @property
    def session_max_age_seconds(self) -> int:
        return self.session_max_age_days * 24 * 60 * 60


class ClientSettings(BaseSettings):
    """Settings for the CLI client and the local OCR adapter."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROMPTLIB_",
        extra="ignore",
    )

    api_url: str = "http://127.0.0.1:8430"
    session_file: Path = Field(default_factory=lambda: Path.home() / ".promptlib" / "session.json")
    request_timeout: float = 30.0

    # OCR
    ocr_language: str = "eng"
    tesseract_cmd: Optional[str] = None
    ocr_timeout: float = 0  # seconds per frame, 0 = no limit


def get_server_settings() -> ServerSettings:
    """Get server settings. Raises if PROMPTLIB_DATABASE_URL is missing."""
    return ServerSettings()


def get_client_settings() -> ClientSettings:
    """Get client settings."""
    return ClientSettings()
