"""
Tests for session, cookie and redirect helpers and the strategy registry.
"""

import logging

import pytest
from fastapi import Response

from cas_login.auth import (
    AuthOutcome,
    AuthStrategy,
    LoginFailedError,
    SessionError,
    StrategyNotFoundError,
    StrategyRegistry,
)
from cas_login.auth.session import (
    DEFAULT_SUCCESS_REDIRECT,
    RETURN_TO_KEY,
    SESSION_USER_KEY,
    append_access_token,
    append_error_to_query_string,
    cookie_options,
    login_session,
    make_signer,
    read_cookie,
    set_token_cookies,
    success_redirect,
)
from cas_login.models import AccessTokenInfo, CasUserProfile

from .helpers import make_request

TOKEN = AccessTokenInfo(id="tok", ttl=60, user_id=7)


class TestCookies:
    """Test suite for token cookies"""

    def test_cookie_options(self):
        options = cookie_options(1209600, domain="example.edu")

        assert options.max_age_ms == 1209600000
        assert options.max_age == 1209600
        assert options.domain == "example.edu"
        assert not options.signed

    def test_empty_domain_is_dropped(self):
        assert cookie_options(60, domain="").domain is None

    def test_set_token_cookies(self):
        response = Response()

        set_token_cookies(response, TOKEN, 7, cookie_options(60))

        headers = response.headers.getlist("set-cookie")
        assert len(headers) == 2
        assert headers[0].startswith("access_token=tok;")
        assert headers[1].startswith("userId=7;")
        assert all("Max-Age=60" in h and "HttpOnly" in h for h in headers)

    def test_signed_cookie_round_trip(self):
        signer = make_signer("s3cret")
        response = Response()
        set_token_cookies(response, TOKEN, 7, cookie_options(60, signed=True), signer)
        signed = response.headers.getlist("set-cookie")[0].split(";", 1)[0].split("=", 1)[1]

        request = make_request()
        request._cookies = {"access_token": signed}
        assert read_cookie(request, "access_token", signer) == "tok"

        request._cookies = {"access_token": "tok.forged"}
        assert read_cookie(request, "access_token", signer) is None

    def test_no_secret_no_signer(self):
        assert make_signer(None) is None
        assert make_signer("") is None


class TestRedirects:
    """Test suite for redirect targets"""

    def test_append_access_token(self):
        assert append_access_token("/home", TOKEN) == "/home?access-token=tok&user-id=7"
        assert append_access_token("/home?tab=1", TOKEN) == "/home?tab=1&access-token=tok&user-id=7"
        assert append_access_token("/home", None) == "/home"

    def test_error_query_uses_code(self):
        error = LoginFailedError("CAS user not authorized!")

        assert append_error_to_query_string("/login.html", error) == "/login.html?error=LOGIN_FAILED"

    def test_error_query_from_dict(self):
        url = append_error_to_query_string("/login.html", {"message": "Invalid CAS ticket"})

        assert url == "/login.html?error=Invalid+CAS+ticket"

    def test_return_to_wins_and_is_consumed(self):
        session = {RETURN_TO_KEY: "/dashboard"}
        request = make_request(session=session)

        assert success_redirect(request, "/home", TOKEN) == "/dashboard?access-token=tok&user-id=7"
        assert RETURN_TO_KEY not in session

    def test_configured_redirect(self):
        assert success_redirect(make_request(session={}), "/home") == "/home"

    def test_fallback_redirect(self):
        assert success_redirect(make_request(), None, TOKEN) == DEFAULT_SUCCESS_REDIRECT


class TestLoginSession:
    """Test suite for login_session"""

    @pytest.mark.asyncio
    async def test_stores_profile_without_token(self):
        session = {}
        user = CasUserProfile(provider="cas", id=1, username="alice", status="active", access_token=TOKEN)

        await login_session(make_request(session=session), user, StrategyRegistry())

        assert session[SESSION_USER_KEY] == {"provider": "cas", "id": 1, "username": "alice", "status": "active"}

    @pytest.mark.asyncio
    async def test_requires_session(self):
        with pytest.raises(SessionError):
            await login_session(make_request(), {"id": 1}, StrategyRegistry())

    @pytest.mark.asyncio
    async def test_async_serializer(self):
        registry = StrategyRegistry()
        session = {}

        @registry.serialize_user
        async def serialize(user):
            return user["id"]

        await login_session(make_request(session=session), {"id": 5}, registry)

        assert session[SESSION_USER_KEY] == 5


class StaticStrategy(AuthStrategy):
    def __init__(self, outcome=None, error=None):
        super().__init__(None, None)
        self.outcome = outcome
        self.error = error

    async def authenticate(self, request, **options):
        if self.error is not None:
            raise self.error
        return self.outcome


class TestStrategyRegistry:
    """Test suite for StrategyRegistry"""

    def test_use_and_get(self):
        registry = StrategyRegistry()
        strategy = registry.use("cas", StaticStrategy())

        assert registry.get("cas") is strategy
        assert "cas" in registry
        assert registry.names() == ["cas"]

    def test_last_registration_wins(self):
        registry = StrategyRegistry()
        registry.use("cas", StaticStrategy())
        second = registry.use("cas", StaticStrategy())

        assert registry.get("cas") is second

    def test_unknown_strategy(self):
        with pytest.raises(StrategyNotFoundError) as exc_info:
            StrategyRegistry().get("missing")

        assert exc_info.value.code == "UNKNOWN_STRATEGY"

    def test_unuse(self):
        registry = StrategyRegistry()
        registry.use("cas", StaticStrategy())
        registry.unuse("cas")

        assert "cas" not in registry

    @pytest.mark.asyncio
    async def test_authenticate_returns_outcome(self):
        registry = StrategyRegistry()
        registry.use("cas", StaticStrategy(outcome=AuthOutcome.success({"id": 1})))

        outcome = await registry.authenticate("cas", make_request())

        assert outcome.authenticated
        assert outcome.user == {"id": 1}

    @pytest.mark.asyncio
    async def test_authenticate_captures_errors(self):
        registry = StrategyRegistry()
        error = RuntimeError("boom")
        registry.use("cas", StaticStrategy(error=error))

        outcome = await registry.authenticate("cas", make_request())

        assert outcome.error is error
        assert not outcome.authenticated

    @pytest.mark.asyncio
    async def test_captured_errors_are_not_logged_as_errors(self, caplog):
        registry = StrategyRegistry()
        registry.use("cas", StaticStrategy(error=RuntimeError("boom")))

        with caplog.at_level(logging.DEBUG, logger="cas_login.auth.strategy"):
            await registry.authenticate("cas", make_request())

        records = [r for r in caplog.records if r.name == "cas_login.auth.strategy"]
        assert records
        assert all(r.levelno < logging.ERROR and r.exc_info is None for r in records)
