"""
Process settings for the Warden runtime.

Uses Pydantic Settings to load environment variables.
All settings prefixed with WARDEN_ for namespace isolation.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WardenSettings(BaseSettings):
    """
    Settings for the Warden process.

    All environment variables are prefixed with WARDEN_.
    Example: WARDEN_CONFIG_PATH, WARDEN_LOG_LEVEL
    """

    config_path: str = Field(
        "config/warden.yaml",
        description="Path to the YAML runtime configuration",
    )
    log_level: str = Field(
        "INFO",
        description="Logging level",
    )
    default_channel: str = Field(
        "stdio",
        description="Channel used when the configuration declares none",
    )
    reap_interval_seconds: float = Field(
        60.0,
        description="Interval between idle-session sweeps",
        gt=0,
    )
    shutdown_grace_seconds: float = Field(
        10.0,
        description="Time allowed for in-flight turns on shutdown",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="WARDEN_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate log level is valid.

        Args:
            v: Log level string.

        Returns:
            Uppercase log level.

        Raises:
            ValueError: If log level is invalid.
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


_settings: WardenSettings | None = None


def get_settings() -> WardenSettings:
    """
    Get Warden settings from environment.

    Returns:
        WardenSettings instance.
    """
    global _settings
    if _settings is None:
        _settings = WardenSettings()  # type: ignore[call-arg]
    return _settings


def reset_settings() -> None:
    """
    Reset settings for testing.

    Clears the cached settings instance.
    """
    global _settings
    _settings = None
