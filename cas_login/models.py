"""
Data Models Module

This module defines Pydantic models for configuration, request/response
validation and data serialization throughout the CAS login plugin.

Models are organized by functional area:
- Provider options (the per-provider options bag)
- Authentication models (sanitized user profile, access token, auth info)
- Response models (token response, health check, errors)
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Provider Options
# ============================================================================

class ProviderOptions(BaseModel):
    """
    Options bag for CasConfigurator.configure_provider.

    Fields accept both snake_case and camelCase names (``auth_path`` or
    ``authPath``). Unknown fields are kept so strategy factories can read
    their own settings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="allow",
    )

    strategy: Optional[Callable[..., Any]] = Field(
        None, description="Strategy factory called as factory(options, verify)"
    )
    module: Optional[str] = Field(
        None, description="Dotted 'package.module:attr' path of a strategy factory"
    )
    provider: Optional[str] = Field(None, description="Provider tag, defaults to the provider name")

    auth_path: Optional[str] = Field(None, description="Initiate-login route path")
    callback_path: Optional[str] = Field(None, description="Callback route path")
    callback_http_method: str = Field(
        default="get", alias="callbackHTTPMethod", description="'get' unless explicitly 'post'"
    )

    session: bool = Field(default=False, description="Establish a login session")
    success_redirect: Optional[str] = Field(None, description="Redirect target after login")
    failure_redirect: Optional[str] = Field(None, description="Redirect target after failed login")
    failure_query_string: bool = Field(default=False, description="Append failure info as ?error=")
    json_response: bool = Field(default=False, alias="json", description="Respond with JSON")
    domain: Optional[str] = Field(None, description="Cookie domain")
    cas_attr_for_username: str = Field(default="user", description="Profile attribute holding the username")

    custom_callback: Optional[Callable[..., Any]] = Field(
        None, description="Endpoint replacing both default route handlers"
    )
    login_callback: Optional[Callable[..., Any]] = Field(
        None, description="Adapter from verified user and token to (user, info)"
    )
    auth_options: Dict[str, Any] = Field(
        default_factory=dict, description="Extra options merged into each authenticate call"
    )

    # CAS strategy settings
    sso_base_url: Optional[str] = Field(None, alias="ssoBaseURL", description="CAS login base URL")
    server_base_url: Optional[str] = Field(None, alias="serverBaseURL", description="Public base URL of this server")
    service_url: Optional[str] = Field(None, alias="serviceURL", description="Service URL sent to CAS")
    validate_url: Optional[str] = Field(None, alias="validateURL", description="Override of the ticket validation URL")
    version: str = Field(default="CAS3.0", description="CAS1.0, CAS2.0 or CAS3.0")

    @field_validator("callback_http_method")
    @classmethod
    def normalize_http_method(cls, v: str) -> str:
        return "post" if (v or "").lower() == "post" else "get"

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        allowed_versions = ["CAS1.0", "CAS2.0", "CAS3.0"]
        if v not in allowed_versions:
            raise ValueError(f"CAS version must be one of {allowed_versions}, got: {v}")
        return v


# ============================================================================
# Authentication Models
# ============================================================================

class AccessTokenInfo(BaseModel):
    """Access token issued to a CAS user after a successful login."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Access token id")
    ttl: int = Field(..., description="Time to live in seconds")
    user_id: int = Field(..., description="Owning user id")
    created: Optional[datetime] = Field(None, description="Creation timestamp")


class CasUserProfile(BaseModel):
    """Sanitized user profile handed to the authentication layer."""

    provider: str = Field(..., description="Provider tag")
    id: int = Field(..., description="Local user id")
    username: str = Field(..., description="Local username")
    status: Optional[str] = Field(None, description="Account status")
    access_token: Optional[AccessTokenInfo] = Field(None, description="Token issued for this login")


class AuthInfo(BaseModel):
    """Auth info passed alongside the user by the login callback."""

    identity: Optional[Dict[str, Any]] = Field(None, description="Profile asserted by CAS")
    access_token: Optional[AccessTokenInfo] = Field(None, description="Token issued for this login")


# ============================================================================
# Response Models
# ============================================================================

class TokenResponse(BaseModel):
    """JSON body returned by the callback when the provider runs in JSON mode."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., description="Access token id")
    user_id: Optional[Union[int, str]] = Field(None, alias="userId", description="Owning user id")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
