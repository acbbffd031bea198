"""
Authentication Package

This package wires CAS (Central Authentication Service) logins into a
FastAPI application and a SQLAlchemy-backed user model.

Key responsibilities:
- CAS login redirect and service ticket validation
- Mapping the CAS profile onto a local CasUser and issuing access tokens
- Named strategy registration and per-provider route binding
- Response shaping: failure redirects, login sessions, token cookies or JSON

Modules:
- routes: CasConfigurator (verify function, route binding, response shaping)
- cas: CasStrategy and CAS response parsing
- strategy: strategy base class, outcomes, registry and errors
- session: login session, token cookies, redirects and the login guard

The authentication flow:
1. Client hits /auth/{name} and is redirected to the CAS login page
2. CAS redirects back to /auth/{name}/callback with a service ticket
3. The ticket is validated and the profile matched to a local user
4. An access token is issued and delivered as cookies or JSON
"""

from .cas import CasStrategy
from .routes import CasConfigurator, default_login_callback
from .session import LoginRequired, get_current_user
from .strategy import (
    AuthError,
    AuthOutcome,
    AuthStrategy,
    LoginFailedError,
    SessionError,
    StrategyNotFoundError,
    StrategyRegistry,
    TicketValidationError,
    VerifyResult,
)

__all__ = [
    "AuthError",
    "AuthOutcome",
    "AuthStrategy",
    "CasConfigurator",
    "CasStrategy",
    "LoginFailedError",
    "LoginRequired",
    "SessionError",
    "StrategyNotFoundError",
    "StrategyRegistry",
    "TicketValidationError",
    "VerifyResult",
    "default_login_callback",
    "get_current_user",
]
