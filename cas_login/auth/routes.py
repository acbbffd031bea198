"""
CAS configurator: strategy registration and login routes.

This module wires a CAS login into a FastAPI application:

1. A verify function maps the CAS profile onto a local CasUser and issues
   an access token
2. The strategy is registered under the provider name
3. Two routes are bound per provider (initiate-login and callback)
4. The callback shapes the response: failure redirect or 401 JSON,
   optional login session, token cookies or JSON, success redirect
"""

import importlib
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.routing import APIRoute
from sqlalchemy import select

from ..db import AccessToken, CasUser, data_sources
from ..db.models import USER_TABLE
from ..db.session import DEFAULT_DATA_SOURCE, DatabaseSessionManager
from ..models import AccessTokenInfo, AuthInfo, CasUserProfile, ProviderOptions, TokenResponse
from .cas import CasStrategy
from .session import (
    append_error_to_query_string,
    cookie_options,
    login_session,
    make_signer,
    set_token_cookies,
    success_redirect,
)
from .strategy import (
    AuthStrategy,
    LoginFailedError,
    StrategyRegistry,
    VerifyResult,
    maybe_await,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REDIRECT = "/login.html"


# =============================================================================
# Login Callback
# =============================================================================

def default_login_callback(
    request: Request,
    user: CasUserProfile,
    identity: Dict[str, Any],
    token: Optional[AccessTokenInfo],
) -> VerifyResult:
    """Package the verified user, the CAS identity and the token"""
    return VerifyResult(user=user, info=AuthInfo(identity=identity, access_token=token))


def _user_id(user: Any) -> Any:
    if isinstance(user, dict):
        return user.get("id")
    return getattr(user, "id", None)


def _access_token(info: Any) -> Optional[AccessTokenInfo]:
    if info is None:
        return None
    if isinstance(info, dict):
        token = info.get("access_token") or info.get("accessToken")
    else:
        token = getattr(info, "access_token", None)
    if token is None or isinstance(token, AccessTokenInfo):
        return token
    return AccessTokenInfo.model_validate(token)


def resolve_strategy_module(path: str) -> Callable[..., AuthStrategy]:
    """
    Import a strategy factory from ``package.module:attr``.

    Without ``:attr`` the module's ``Strategy`` attribute is used, falling
    back to a module-level ``strategy`` factory.
    """
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    for candidate in ([attr] if attr else ["Strategy", "strategy"]):
        factory = getattr(module, candidate, None)
        if callable(factory):
            return factory
    raise ImportError(f"No strategy factory found in '{path}'")


# =============================================================================
# Configurator
# =============================================================================

class CasConfigurator:
    """
    Configure CAS login providers on a FastAPI application.

    Usage:
        configurator = CasConfigurator(app)
        configurator.setup_models()
        configurator.init()
        configurator.configure_provider("cas", {"ssoBaseURL": "https://cas.example.edu/cas"})
    """

    def __init__(
        self,
        app: FastAPI,
        registry: Optional[StrategyRegistry] = None,
        cookie_secret: Optional[str] = None,
    ):
        self.app = app
        self.registry = registry or StrategyRegistry()
        self.signer = make_signer(cookie_secret)
        self.user_model = None
        self.data_source: Optional[DatabaseSessionManager] = None
        self._provider_routes: Dict[str, List[APIRoute]] = {}

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def setup_models(self, cas_user_model=None, data_source: Optional[DatabaseSessionManager] = None) -> None:
        """
        Select the user model and, optionally, the data source to query.

        Without a data source the model's attached data source is used at
        request time. Access tokens reference ``USER_TABLE``, so a custom
        model must be mapped to that table.
        """
        if cas_user_model is not None and cas_user_model.__table__.name != USER_TABLE:
            raise ValueError(
                f"{cas_user_model.__name__} maps to table '{cas_user_model.__table__.name}', "
                f"access tokens reference '{USER_TABLE}'"
            )
        self.user_model = cas_user_model or CasUser
        self.data_source = data_source

    def init(self) -> StrategyRegistry:
        """Install the strategy registry on the application and return it"""
        self.app.state.strategies = self.registry
        self.app.state.cas_configurator = self
        return self.registry

    def get_data_source(self) -> DatabaseSessionManager:
        if self.user_model is None:
            self.setup_models()
        data_source = (
            self.data_source
            or getattr(self.user_model, "data_source", None)
            or data_sources.get(getattr(self.user_model, "auto_attach", None) or DEFAULT_DATA_SOURCE)
        )
        if data_source is None:
            raise RuntimeError(f"{self.user_model.__name__} is not attached to a data source")
        return data_source

    # -------------------------------------------------------------------------
    # Verify
    # -------------------------------------------------------------------------

    def build_verify(self, options: ProviderOptions, login_callback: Callable[..., Any]):
        """Build the verify function handed to the strategy"""

        async def verify(request: Request, profile: Optional[Dict[str, Any]]) -> Optional[VerifyResult]:
            if not profile:
                return None

            username = profile.get(options.cas_attr_for_username)
            if not username:
                logger.info(
                    f"CAS profile has no '{options.cas_attr_for_username}' attribute"
                )
                raise LoginFailedError("CAS user not authorized!")

            try:
                async with self.get_data_source().session() as db:
                    return await self._login(db, request, profile, username, options, login_callback)
            except LoginFailedError:
                raise
            except Exception as e:
                logger.warning(f"Login for CAS user failed: {e}", exc_info=True)
                raise LoginFailedError() from e

        return verify

    async def _login(self, db, request, profile, username, options, login_callback) -> VerifyResult:
        model = self.user_model

        try:
            users = await model.find_by_username(db, username)
        except Exception as e:
            logger.debug(f"An error is reported from {model.__name__}.find_by_username: {e}")
            raise LoginFailedError() from e

        if not users:
            raise LoginFailedError("CAS user not authorized!")
        if len(users) > 1:
            logger.warning(f"Ambiguous CAS username '{username}' matches several users")
            raise LoginFailedError("Ambiguous CAS username")

        # At this point, a user with the matching CAS username exists
        # and should be allowed.
        user = users[0]
        try:
            token = await user.create_access_token(db, ttl=user.ttl)
        except Exception as e:
            logger.debug(f"Error creating access token: {e}")
            raise LoginFailedError() from e

        if token is None:
            raise LoginFailedError()

        token_info = AccessTokenInfo.model_validate(token)
        user_profile = CasUserProfile(
            provider=options.provider,
            id=user.id,
            username=user.username,
            status=user.status,
            access_token=token_info,
        )
        return await maybe_await(login_callback(request, user_profile, profile, token_info))

    # -------------------------------------------------------------------------
    # Providers
    # -------------------------------------------------------------------------

    def _strategy_factory(self, options: ProviderOptions) -> Callable[..., AuthStrategy]:
        if options.strategy is not None:
            return options.strategy
        if options.module:
            return resolve_strategy_module(options.module)
        return CasStrategy

    def configure_provider(
        self,
        name: str,
        options: Union[ProviderOptions, Dict[str, Any], None] = None,
    ) -> AuthStrategy:
        """
        Register the strategy for ``name`` and bind its routes.

        Calling this again with the same name replaces both the strategy
        and the routes.
        """
        if not name:
            raise ValueError("Provider name is required")
        if self.user_model is None:
            self.setup_models()

        if options is None:
            options = ProviderOptions()
        elif isinstance(options, dict):
            options = ProviderOptions.model_validate(options)

        options = options.model_copy(update={
            "provider": options.provider or name,
            "auth_path": options.auth_path or f"/auth/{name}",
            "callback_path": options.callback_path or f"/auth/{name}/callback",
            "failure_redirect": options.failure_redirect or DEFAULT_FAILURE_REDIRECT,
        })

        login_callback = options.login_callback or default_login_callback
        verify = self.build_verify(options, login_callback)
        strategy = self._strategy_factory(options)(options, verify)

        self.registry.use(name, strategy)

        handler = options.custom_callback or self.build_callback(name, options)
        self._unbind_provider(name)
        self._provider_routes[name] = [
            self._bind_route("get", options.auth_path, handler, f"{name}_auth"),
            self._bind_route(options.callback_http_method, options.callback_path, handler, f"{name}_callback"),
        ]

        logger.info(
            f"Configured CAS provider '{name}'",
            extra={
                "auth_path": options.auth_path,
                "callback_path": options.callback_path,
                "session": options.session,
            },
        )
        return strategy

    def _unbind_provider(self, name: str) -> None:
        """Remove every route bound by an earlier configuration of ``name``"""
        previous = self._provider_routes.pop(name, [])
        if previous:
            self.app.router.routes[:] = [
                route for route in self.app.router.routes
                if not any(route is old for old in previous)
            ]

    def _bind_route(self, method: str, path: str, endpoint: Callable[..., Any], route_name: str) -> APIRoute:
        """Bind ``endpoint``, dropping any route already bound to the same path and method"""
        method = method.upper()
        self.app.router.routes[:] = [
            route for route in self.app.router.routes
            if not (isinstance(route, APIRoute) and route.path == path and method in route.methods)
        ]
        self.app.add_api_route(path, endpoint, methods=[method], name=route_name, include_in_schema=False)
        return self.app.router.routes[-1]

    # -------------------------------------------------------------------------
    # Response Shaping
    # -------------------------------------------------------------------------

    def build_callback(self, name: str, options: ProviderOptions):
        """The default handler for both provider routes"""
        registry = self.registry
        signer = self.signer
        # The provider's own session flag wins over authOptions
        authenticate_options = {**options.auth_options, "session": options.session}

        async def cas_callback(request: Request) -> Response:
            outcome = await registry.authenticate(name, request, **authenticate_options)

            if outcome.redirect_url:
                return RedirectResponse(outcome.redirect_url, status_code=302)
            if outcome.error is not None:
                raise outcome.error

            user, info = outcome.user, outcome.info
            if not user:
                if options.json_response:
                    return JSONResponse("Authentication error.", status_code=401)
                if options.failure_query_string and info:
                    return RedirectResponse(
                        append_error_to_query_string(options.failure_redirect, info),
                        status_code=302,
                    )
                return RedirectResponse(options.failure_redirect, status_code=302)

            if options.session:
                await login_session(request, user, registry)

            token = _access_token(info)
            user_id = _user_id(user)

            if token and options.json_response:
                body = TokenResponse(access_token=token.id, user_id=user_id)
                return JSONResponse(body.model_dump(by_alias=True))

            # With a session the token travels in cookies only
            target = success_redirect(
                request, options.success_redirect, None if options.session else token
            )
            response = RedirectResponse(target, status_code=302)
            if token:
                set_token_cookies(
                    response,
                    token,
                    user_id,
                    cookie_options(token.ttl, options.domain, signed=signer is not None),
                    signer,
                )
            return response

        cas_callback.__name__ = f"{name}_callback"
        return cas_callback

    # -------------------------------------------------------------------------
    # Token Lookup
    # -------------------------------------------------------------------------

    async def resolve_token_user(self, token_id: str) -> Optional[Dict[str, Any]]:
        """Sanitized user owning a valid access token, or None"""
        model = self.user_model or CasUser
        async with self.get_data_source().session() as db:
            token = await AccessToken.find_valid(db, token_id)
            if token is None:
                return None
            result = await db.execute(select(model).where(model.id == token.user_id))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return {
                "id": user.id,
                "username": user.username,
                "status": user.status,
            }
