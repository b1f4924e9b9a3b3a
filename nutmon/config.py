"""
Configuration management for nutmon.

This module uses Pydantic's BaseSettings to manage configuration
through environment variables. It provides a centralized and typed
way to handle application settings.
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.timeparse import parse_duration


class Settings(BaseSettings):
    """
    Application settings.

    These settings are loaded from environment variables.
    """

    # NUT Server Configuration
    NUT_HOST: str = "localhost"
    NUT_PORT: int = Field(3493, ge=1, le=65535)
    NUT_USERNAME: str | None = None
    NUT_PASSWORD: str | None = None
    NUT_TIMEOUT: float = Field(5.0, gt=0)

    # Discovery and polling
    SEARCH_TIME_DELAY: float = Field(1.0, ge=0)  # seconds
    POLL_INTERVAL: int = Field(0, ge=0)  # seconds, 0 disables polling
    FETCH_TIMEOUT: float = Field(10.0, gt=0)

    # Status derivation
    LOW_BATT_THRESHOLD: int = Field(40, ge=0, le=100)

    # Treat every NUT error reply as a lost session
    DISCONNECT_ON_ERROR: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_prefix="NUTMON_",
    )

    @field_validator("POLL_INTERVAL", mode="before")
    @classmethod
    def _parse_poll_interval(cls, value):
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @property
    def reconnect_wait(self) -> float:
        """Seconds a poller waits for the session after asking for a reconnect."""
        return self.SEARCH_TIME_DELAY + 1.0


settings = Settings()
