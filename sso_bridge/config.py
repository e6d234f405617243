"""
Configuration module for SSO Bridge.

This module provides environment variable configuration and settings management
using Pydantic Settings for type-safe configuration.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SSOBridgeSettings(BaseSettings):
    """
    Configuration settings for SSO Bridge application.

    All settings are loaded from environment variables with validation.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Required environment variables
    api_bearer_token: str = Field(
        ...,
        description="Bearer token callers must present to the SSO Bridge API"
    )

    keycloak_url: str = Field(
        ...,
        description="Base URL of the Keycloak server, e.g. https://keycloak.example.com"
    )

    # Environment variables with defaults
    keycloak_realm: str = Field(
        "cosmo",
        description="Realm holding the organizations' identity providers and groups"
    )

    keycloak_admin_realm: str = Field(
        "master",
        description="Realm the admin credentials authenticate against"
    )

    keycloak_client_id: str = Field(
        "admin-cli",
        description="Client used to obtain admin tokens"
    )

    keycloak_client_secret: Optional[str] = Field(
        None,
        description="Client secret for a client-credentials grant"
    )

    keycloak_admin_user: Optional[str] = Field(
        None,
        description="Admin username for a password grant"
    )

    keycloak_admin_password: Optional[str] = Field(
        None,
        description="Admin password for a password grant"
    )

    log_level: str = Field(
        "INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    provider_store_file: Path = Field(
        Path("/data/oidc_providers.json"),
        description="JSON file path for persistent OIDC provider records"
    )

    # Broker call tuning
    request_timeout_seconds: float = Field(
        10.0,
        gt=0,
        description="Timeout for a single Keycloak request"
    )

    retry_max_tries: int = Field(
        3,
        ge=1,
        description="Attempts per broker call when Keycloak is unavailable"
    )

    retry_backoff_factor: float = Field(
        0.5,
        ge=0,
        description="Exponential backoff factor in seconds between attempts"
    )

    cleanup_max_workers: int = Field(
        4,
        ge=1,
        description="Parallel per-user cleanups while deprovisioning"
    )

    workflow_timeout_seconds: Optional[float] = Field(
        None,
        gt=0,
        description="Cancel a workflow at the next step boundary after this many seconds"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("keycloak_url")
    @classmethod
    def validate_keycloak_url(cls, v):
        """Validate Keycloak URL format."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("KEYCLOAK_URL must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("api_bearer_token")
    @classmethod
    def validate_token(cls, v):
        """Validate the API token is not empty."""
        if not v or not v.strip():
            raise ValueError("api_bearer_token cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_keycloak_credentials(self):
        """Either admin user/password or a client secret must be configured."""
        has_password = bool(self.keycloak_admin_user and self.keycloak_admin_password)
        if not has_password and not self.keycloak_client_secret:
            raise ValueError(
                "Set KEYCLOAK_ADMIN_USER and KEYCLOAK_ADMIN_PASSWORD, or KEYCLOAK_CLIENT_SECRET"
            )
        return self

    def ensure_data_directories(self) -> None:
        """Create the parent directory of the provider record file."""
        self.provider_store_file.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings: Optional[SSOBridgeSettings] = None


def get_settings() -> SSOBridgeSettings:
    """
    Get the global settings instance, creating it if necessary.

    Returns:
        SSOBridgeSettings: The global settings instance

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global settings
    if settings is None:
        settings = SSOBridgeSettings()
        settings.ensure_data_directories()
    return settings


def reload_settings() -> SSOBridgeSettings:
    """
    Force reload settings from environment variables.

    This is useful for testing or when environment variables change.

    Returns:
        SSOBridgeSettings: New settings instance
    """
    global settings
    settings = SSOBridgeSettings()
    settings.ensure_data_directories()
    return settings
