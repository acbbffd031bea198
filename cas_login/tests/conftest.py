"""
Shared fixtures for the CAS login tests.

The application runs against a throwaway SQLite database and is driven
through httpx's ASGI transport, so the data source and the requests share
one event loop.
"""

from typing import List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from cas_login.config import Settings
from cas_login.db import AccessToken, CasUser
from cas_login.main import create_app

from .helpers import FakeCasStrategy


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a per-test SQLite database"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cas.db'}",
        SESSION_SECRET="test-session-secret-0123456789",
        CAS_SERVER_URL=None,
        COOKIE_SECRET=None,
        LOG_LEVEL="DEBUG",
    )


@pytest_asyncio.fixture
async def app(settings):
    """Test application with an initialized data source"""
    app = create_app(settings)
    data_source = app.state.data_source
    await data_source.init(settings.DATABASE_URL)
    await data_source.create_all()
    yield app
    await data_source.close()


@pytest.fixture
def configurator(app):
    return app.state.cas_configurator


@pytest.fixture
def configure(configurator):
    """Configure the 'cas' provider with the fake strategy"""

    def _configure(name: str = "cas", **options):
        options.setdefault("strategy", FakeCasStrategy)
        return configurator.configure_provider(name, options)

    return _configure


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def create_user(app):
    """Insert a CasUser and return it (detached, attributes loaded)"""

    async def _create_user(**fields) -> CasUser:
        async with app.state.data_source.session() as db:
            user = CasUser(**fields)
            db.add(user)
            await db.flush()
        return user

    return _create_user


@pytest_asyncio.fixture
async def alice(create_user):
    return await create_user(username="alice", status="active", ttl=1209600)


@pytest.fixture
def tokens_for(app):
    """Fetch every AccessToken row of a user"""
    async def _tokens_for(user_id: int) -> List[AccessToken]:
        async with app.state.data_source.session() as db:
            result = await db.execute(select(AccessToken).where(AccessToken.user_id == user_id))
            return list(result.scalars().all())

    return _tokens_for
