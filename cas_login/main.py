"""
FastAPI Application Factory
===========================

Entry point for a service that authenticates users against a CAS server
and maps them onto local CasUser records.

Routes:
    - /auth/{name}           : Initiate CAS login (redirect to the CAS server)
    - /auth/{name}/callback  : CAS callback (ticket validation, token delivery)
    - /auth/account          : Current user (login required)
    - /health                : Health check endpoint

Environment Variables:
    - CAS_SERVER_URL: CAS server base URL (providers are configured only when set)
    - CAS_PROVIDER_NAME: Provider name (default: cas)
    - DATABASE_URL: SQLAlchemy URL of the "db" data source
    - SESSION_SECRET: Secret for the session cookie
    - COOKIE_SECRET: Secret for signing token cookies (optional)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn cas_login.main:app --reload --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn cas_login.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .auth import AuthError, CasConfigurator, LoginRequired
from .config import Settings, get_settings
from .db import DatabaseSessionManager, data_sources
from .models import ErrorResponse, HealthResponse, ProviderOptions


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def provider_options_from_settings(settings: Settings) -> ProviderOptions:
    return ProviderOptions(
        sso_base_url=settings.cas_server_url_str,
        service_url=settings.CAS_SERVICE_URL,
        version=settings.CAS_VERSION,
        cas_attr_for_username=settings.CAS_ATTR_FOR_USERNAME,
        session=settings.CAS_SESSION,
        json_response=settings.CAS_JSON,
        success_redirect=settings.SUCCESS_REDIRECT,
        failure_redirect=settings.FAILURE_REDIRECT,
        failure_query_string=settings.FAILURE_QUERY_STRING,
        domain=settings.COOKIE_DOMAIN,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (data source init and shutdown)
        - Session and CORS middleware
        - CAS configurator and, when CAS_SERVER_URL is set, its provider
        - Exception handlers

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("cas_login.main")

    data_source = data_sources.register(DatabaseSessionManager())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting CAS login service")
        await data_source.init(settings.DATABASE_URL, echo=settings.SQL_ECHO)
        await data_source.create_all()
        logger.info("Data source ready", extra={"models": [m.__name__ for m in data_source.models]})

        yield

        logger.info("Shutting down CAS login service")
        await data_source.close()

    app = FastAPI(
        title="CAS Login Service",
        description="CAS authentication mapped onto local users and access tokens",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.data_source = data_source

    app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    configurator = CasConfigurator(app, cookie_secret=settings.COOKIE_SECRET)
    configurator.setup_models()
    configurator.init()

    if settings.CAS_SERVER_URL:
        configurator.configure_provider(
            settings.CAS_PROVIDER_NAME, provider_options_from_settings(settings)
        )
    else:
        logger.warning("CAS_SERVER_URL is not set, no CAS provider configured")

    login_required = LoginRequired(login_url=f"/auth/{settings.CAS_PROVIDER_NAME}")

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service="cas-login")

    @app.get("/auth/account", tags=["Authentication"])
    async def account(user: Dict[str, Any] = Depends(login_required)) -> Dict[str, Any]:
        """Return the logged-in user."""
        return user

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """
        Render authentication errors.

        Only the error code and the public message leave the service.
        """
        logger.warning(
            f"Authentication error: {exc}",
            extra={
                "path": request.url.path,
                "code": exc.code,
            },
        )
        body = ErrorResponse(error=exc.code, message=exc.public_message)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "cas_login.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
