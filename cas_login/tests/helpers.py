"""Test helpers shared by the CAS login test modules."""

from typing import Any, Dict, Optional

import httpx
from starlette.requests import Request

from cas_login.auth import AuthOutcome, AuthStrategy

CAS_LOGIN_URL = "https://cas.example.edu/cas/login"


class FakeCasStrategy(AuthStrategy):
    """Treats ?user=<name> as a ticket the CAS server already validated"""

    name = "fake-cas"

    async def authenticate(self, request, **options):
        username = request.query_params.get("user")
        if username is None:
            return AuthOutcome.redirect(CAS_LOGIN_URL)
        profile = {"user": username, "mail": f"{username}@example.edu"}
        return await self.run_verify(request, profile)


def make_request(
    path: str = "/auth/cas/callback",
    query_string: bytes = b"",
    session: Optional[Dict[str, Any]] = None,
    method: str = "GET",
) -> Request:
    """Bare Starlette request, with a session when one is given"""
    scope = {
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "root_path": "",
        "query_string": query_string,
        "headers": [],
    }
    if session is not None:
        scope["session"] = session
    return Request(scope)


def set_cookies(response: httpx.Response) -> Dict[str, str]:
    """Map cookie name -> full Set-Cookie header"""
    cookies = {}
    for header in response.headers.get_list("set-cookie"):
        name = header.split("=", 1)[0]
        cookies[name] = header
    return cookies


def cookie_value(header: str) -> str:
    return header.split(";", 1)[0].split("=", 1)[1].strip('"')
