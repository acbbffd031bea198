"""
Configuration module for the CAS login service.

This module uses Pydantic Settings to load and validate environment variables
for the CAS server, the local user database, session and cookie signing,
and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything needed to configure one CAS provider on the host
    application is defined here. Per-provider options that only make sense
    in code (custom callbacks, strategy factories) are passed to
    CasConfigurator.configure_provider directly.
    """

    # =========================================================================
    # CAS Server Configuration
    # =========================================================================

    CAS_SERVER_URL: Optional[str] = Field(
        None,
        description="CAS server base URL (e.g., https://cas.example.edu/cas)",
    )

    CAS_SERVICE_URL: Optional[str] = Field(
        None,
        description="Absolute service URL registered with CAS (defaults to the callback URL of the request)",
    )

    CAS_VERSION: str = Field(
        default="CAS3.0",
        description="CAS protocol version used for ticket validation",
    )

    CAS_PROVIDER_NAME: str = Field(
        default="cas",
        description="Provider name; routes are mounted at /auth/{name}",
        min_length=1,
    )

    CAS_ATTR_FOR_USERNAME: str = Field(
        default="user",
        description="Profile attribute used to look up the local user",
    )

    # =========================================================================
    # Login Behaviour
    # =========================================================================

    CAS_SESSION: bool = Field(
        default=False,
        description="Establish a login session after authentication",
    )

    CAS_JSON: bool = Field(
        default=False,
        description="Respond with JSON instead of cookies and redirects",
    )

    SUCCESS_REDIRECT: Optional[str] = Field(
        None,
        description="Redirect target after successful login",
    )

    FAILURE_REDIRECT: str = Field(
        default="/login.html",
        description="Redirect target after failed login",
    )

    FAILURE_QUERY_STRING: bool = Field(
        default=False,
        description="Append failure details to FAILURE_REDIRECT as a query string",
    )

    COOKIE_DOMAIN: Optional[str] = Field(
        None,
        description="Domain for the access_token and userId cookies",
    )

    # =========================================================================
    # Secrets
    # =========================================================================

    SESSION_SECRET: str = Field(
        default="change-me-in-production-session-secret",
        description="Secret key for signing the session cookie",
        min_length=16,
    )

    COOKIE_SECRET: Optional[str] = Field(
        None,
        description="Secret for signing access_token/userId cookies (unsigned when empty)",
    )

    # =========================================================================
    # Database
    # =========================================================================

    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./cas_login.db",
        description="SQLAlchemy database URL for the default data source",
    )

    SQL_ECHO: bool = Field(
        default=False,
        description="Log emitted SQL",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []
        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def cas_server_url_str(self) -> Optional[str]:
        """CAS server URL without trailing slash."""
        if not self.CAS_SERVER_URL:
            return None
        return self.CAS_SERVER_URL.rstrip("/")

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("CAS_VERSION")
    @classmethod
    def validate_cas_version(cls, v: str) -> str:
        """
        Validate the CAS protocol version.

        Raises:
            ValueError: If the version is not supported
        """
        allowed_versions = ["CAS1.0", "CAS2.0", "CAS3.0"]
        if v not in allowed_versions:
            raise ValueError(
                f"CAS version must be one of {allowed_versions}, got: {v}"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )
        return v.upper()

    @field_validator("CAS_SERVER_URL")
    @classmethod
    def validate_cas_server_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid CAS_SERVER_URL: '{v}'. "
                "Expected an http:// or https:// URL"
            )
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle. Tests call get_settings.cache_clear()
    after changing the environment.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()
