"""
Login Session and Token Delivery
================================

Helpers used by the CAS callback once a user is authenticated:

- establishing the login session (Starlette session, via the registry's
  user serializer)
- delivering the access token as cookies, signed when a cookie secret
  is configured
- computing the post-login redirect, honouring a stored "return to"
  location set by the login-required guard

Also provides the login-required guard and current-user resolution used
by protected routes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import HTTPException, Request, status
from fastapi.responses import Response
from itsdangerous import BadSignature, Signer

from ..models import AccessTokenInfo
from .strategy import SessionError, StrategyRegistry

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"
RETURN_TO_KEY = "returnTo"
DEFAULT_SUCCESS_REDIRECT = "/auth/account"
COOKIE_SALT = "cas-login.cookie"


# =============================================================================
# Session
# =============================================================================

def has_session(request: Request) -> bool:
    """True when SessionMiddleware is installed for this request"""
    return "session" in request.scope


async def login_session(request: Request, user: Any, registry: StrategyRegistry) -> None:
    """
    Store the serialized user in the session.

    Raises:
        SessionError: If there is no session or the user cannot be serialized
    """
    if not has_session(request):
        raise SessionError("SessionMiddleware must be installed to establish a login session")

    try:
        serialized = await registry.serialize(user)
    except Exception as e:
        logger.error(f"Failed to serialize user into session: {e}", exc_info=True)
        raise SessionError(f"Failed to serialize user: {e}") from e

    request.session[SESSION_USER_KEY] = serialized


def session_user(request: Request) -> Optional[Dict[str, Any]]:
    if not has_session(request):
        return None
    return request.session.get(SESSION_USER_KEY)


def pop_return_to(request: Request) -> Optional[str]:
    """Consume the stored "return to" location, if any"""
    if not has_session(request):
        return None
    return request.session.pop(RETURN_TO_KEY, None)


# =============================================================================
# Redirect Targets
# =============================================================================

def _with_query(url: str, params: Dict[str, Any]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def append_access_token(url: Optional[str], access_token: Optional[AccessTokenInfo]) -> Optional[str]:
    if not url or not access_token:
        return url
    return _with_query(url, {"access-token": access_token.id, "user-id": access_token.user_id})


def append_error_to_query_string(url: str, info: Any) -> str:
    """
    Append ``error=<info>`` to the failure URL.

    Authentication errors contribute their code only, never their message.
    """
    code = getattr(info, "code", None)
    if code:
        error = code
    elif isinstance(info, dict):
        error = info.get("message") or info.get("error") or "authentication_failed"
    else:
        error = str(info)
    return _with_query(url, {"error": error})


def success_redirect(
    request: Request,
    configured: Optional[str],
    access_token: Optional[AccessTokenInfo] = None,
) -> str:
    """
    Where to send the user after login.

    A stored "return to" location wins and is cleared; then the configured
    success URL; then /auth/account. The access token is appended as
    ``access-token``/``user-id`` query parameters when given.
    """
    return_to = pop_return_to(request)
    if return_to:
        return append_access_token(return_to, access_token)
    if configured:
        return append_access_token(configured, access_token)
    return DEFAULT_SUCCESS_REDIRECT


# =============================================================================
# Cookies
# =============================================================================

@dataclass
class CookieOptions:
    max_age_ms: int
    domain: Optional[str] = None
    signed: bool = False

    @property
    def max_age(self) -> int:
        """Max-Age attribute value, in seconds"""
        return self.max_age_ms // 1000


def cookie_options(ttl: int, domain: Optional[str] = None, signed: bool = False) -> CookieOptions:
    """Cookie options for a token living ``ttl`` seconds"""
    return CookieOptions(max_age_ms=1000 * ttl, domain=domain or None, signed=signed)


def make_signer(secret: Optional[str]) -> Optional[Signer]:
    if not secret:
        return None
    return Signer(secret, salt=COOKIE_SALT)


def set_token_cookies(
    response: Response,
    access_token: AccessTokenInfo,
    user_id: Any,
    options: CookieOptions,
    signer: Optional[Signer] = None,
) -> None:
    """Set the access_token and userId cookies"""
    for key, value in (("access_token", access_token.id), ("userId", str(user_id))):
        if options.signed and signer is not None:
            value = signer.sign(value).decode("utf-8")
        response.set_cookie(
            key,
            value,
            max_age=options.max_age,
            domain=options.domain,
            httponly=True,
            samesite="lax",
        )


def read_cookie(request: Request, key: str, signer: Optional[Signer] = None) -> Optional[str]:
    value = request.cookies.get(key)
    if value is None or signer is None:
        return value
    try:
        return signer.unsign(value).decode("utf-8")
    except BadSignature:
        logger.warning(f"Rejected cookie '{key}' with bad signature")
        return None


# =============================================================================
# Current User
# =============================================================================

def extract_token(request: Request, signer: Optional[Signer] = None) -> Optional[str]:
    """Access token id from the cookie, ``access-token`` query param or bearer header"""
    token = read_cookie(request, "access_token", signer)
    if token:
        return token

    token = request.query_params.get("access-token") or request.query_params.get("access_token")
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


async def get_current_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Resolve the logged-in user: session first, then a valid access token.

    Returns None when nobody is logged in.
    """
    user = session_user(request)
    if user:
        return user

    configurator = getattr(request.app.state, "cas_configurator", None)
    if configurator is None:
        return None

    token_id = extract_token(request, configurator.signer)
    if not token_id:
        return None
    return await configurator.resolve_token_user(token_id)


class LoginRequired:
    """
    Dependency guarding routes that need a logged-in user.

    Anonymous requests have their URL stored as the "return to" location
    and are redirected to the login path.
    """

    def __init__(self, login_url: str = "/auth/cas"):
        self.login_url = login_url

    async def __call__(self, request: Request) -> Dict[str, Any]:
        user = await get_current_user(request)
        if user:
            return user

        if has_session(request):
            return_to = request.url.path
            if request.url.query:
                return_to = f"{return_to}?{request.url.query}"
            request.session[RETURN_TO_KEY] = return_to

        raise HTTPException(
            status_code=status.HTTP_302_FOUND,
            detail="Login required",
            headers={"Location": self.login_url},
        )
