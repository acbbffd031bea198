"""
Authentication Strategies and Registry
======================================

A strategy validates whatever credential the request carries, hands the
resulting profile to a verify function and reports one outcome:

- success: a user (and auth info) was established
- fail:    no user; ``info`` explains why
- redirect: the client must go somewhere else first (e.g. the CAS login page)
- error:   something broke; the caller propagates it

Strategies are registered by name in a StrategyRegistry owned by the
application (``app.state.strategies``). Registering a name again replaces
the previous strategy.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from starlette.requests import Request

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class AuthError(Exception):
    """Base exception for authentication errors"""

    status_code = 500
    code = "AUTH_ERROR"
    public_message = "Authentication error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message or self.public_message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class LoginFailedError(AuthError):
    """
    Login was refused.

    The message is for logs only; clients always see ``public_message``,
    whatever the cause (lookup error, unknown user, token failure).
    """

    status_code = 401
    code = "LOGIN_FAILED"
    public_message = "Login failed"


class SessionError(AuthError):
    """The login session could not be established"""

    code = "SESSION_ERROR"
    public_message = "Unable to establish login session"


class StrategyNotFoundError(AuthError):
    code = "UNKNOWN_STRATEGY"
    public_message = "Unknown authentication strategy"


class TicketValidationError(AuthError):
    """The CAS server could not be reached or answered with garbage"""

    status_code = 502
    code = "CAS_VALIDATION_ERROR"
    public_message = "Unable to validate CAS ticket"


# =============================================================================
# Outcomes
# =============================================================================

@dataclass
class VerifyResult:
    """What a verify function hands back to its strategy"""

    user: Any
    info: Any = None


@dataclass
class AuthOutcome:
    user: Any = None
    info: Any = None
    error: Optional[BaseException] = None
    redirect_url: Optional[str] = None

    @classmethod
    def success(cls, user: Any, info: Any = None) -> "AuthOutcome":
        return cls(user=user, info=info)

    @classmethod
    def fail(cls, info: Any = None) -> "AuthOutcome":
        return cls(info=info)

    @classmethod
    def redirect(cls, url: str) -> "AuthOutcome":
        return cls(redirect_url=url)

    @classmethod
    def failure(cls, error: BaseException) -> "AuthOutcome":
        return cls(error=error)

    @property
    def authenticated(self) -> bool:
        return self.error is None and self.redirect_url is None and bool(self.user)


VerifyFunction = Callable[[Request, Optional[Dict[str, Any]]], Awaitable[Optional[VerifyResult]]]


async def maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class AuthStrategy:
    """
    Base class for authentication strategies.

    Subclasses implement ``authenticate`` and call ``run_verify`` once they
    hold a profile.
    """

    name = "strategy"

    def __init__(self, options: Any, verify: VerifyFunction):
        self.options = options
        self.verify = verify

    async def authenticate(self, request: Request, **options: Any) -> AuthOutcome:
        raise NotImplementedError

    async def run_verify(self, request: Request, profile: Optional[Dict[str, Any]]) -> AuthOutcome:
        """
        Call the verify function and turn its result into an outcome.

        LoginFailedError is a refusal, not a crash: it becomes a ``fail``
        outcome carrying the error as info.
        """
        try:
            result = await self.verify(request, profile)
        except LoginFailedError as exc:
            return AuthOutcome.fail(exc)

        if result is None or not result.user:
            return AuthOutcome.fail(result.info if result is not None else None)
        return AuthOutcome.success(result.user, result.info)


# =============================================================================
# Registry
# =============================================================================

def default_serializer(user: Any) -> Dict[str, Any]:
    """Session representation of a user: the sanitized profile without token"""
    if hasattr(user, "model_dump"):
        return user.model_dump(mode="json", exclude={"access_token"})
    if isinstance(user, dict):
        return {k: v for k, v in user.items() if k not in ("access_token", "accessToken")}
    return {"id": getattr(user, "id", None)}


class StrategyRegistry:
    """Named authentication strategies plus the session user serializer"""

    def __init__(self):
        self._strategies: Dict[str, AuthStrategy] = {}
        self._serializer: Callable[[Any], Any] = default_serializer

    def use(self, name: str, strategy: AuthStrategy) -> AuthStrategy:
        if name in self._strategies:
            logger.info(f"Replacing authentication strategy '{name}'")
        self._strategies[name] = strategy
        return strategy

    def unuse(self, name: str) -> None:
        self._strategies.pop(name, None)

    def get(self, name: str) -> AuthStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise StrategyNotFoundError(f"Unknown authentication strategy '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def names(self):
        return list(self._strategies)

    def serialize_user(self, fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
        """Set the function that turns a user into its session form (usable as a decorator)"""
        self._serializer = fn
        return fn

    async def serialize(self, user: Any) -> Any:
        return await maybe_await(self._serializer(user))

    async def authenticate(self, name: str, request: Request, **options: Any) -> AuthOutcome:
        """
        Run the named strategy against the request.

        Exceptions escaping the strategy are returned as ``error`` outcomes;
        it is up to the caller to raise them.
        """
        strategy = self.get(name)
        try:
            return await strategy.authenticate(request, **options)
        except Exception as exc:
            logger.debug(f"Strategy '{name}' raised {type(exc).__name__}: {exc}")
            return AuthOutcome.failure(exc)
