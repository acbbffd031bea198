"""
Database session management for SQLAlchemy with async support

A DatabaseSessionManager wraps one engine and session factory. Managers are
registered by name in a DataSourceRegistry; models declare which data
source they belong to with an ``auto_attach`` attribute (``"db"`` for the
default one) and are attached when that data source is registered.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_SOURCE = "db"


class DatabaseSessionManager:
    """Manage database connections and sessions"""

    def __init__(self, name: str = DEFAULT_DATA_SOURCE):
        self.name = name
        self._engine = None
        self._sessionmaker = None
        self._init_lock = asyncio.Lock()
        self.models: List[type] = []

    @property
    def initialized(self) -> bool:
        """Check if session manager is initialized"""
        return self._sessionmaker is not None

    @property
    def engine(self):
        return self._engine

    async def init(self, database_url: str, **engine_kwargs):
        """Initialize database engine and session maker"""
        if self.initialized:
            return

        async with self._init_lock:  # Double-checked locking
            if self.initialized:
                return

            # Convert postgresql:// to postgresql+asyncpg://
            if database_url.startswith("postgresql://"):
                database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

            default_kwargs = {"echo": engine_kwargs.pop("echo", False)}
            # SQLite does not take pool sizing arguments
            if not database_url.startswith("sqlite"):
                default_kwargs.update({
                    "pool_size": 20,
                    "max_overflow": 10,
                    "pool_pre_ping": True,
                    "pool_recycle": 3600,
                })
            default_kwargs.update(engine_kwargs)

            self._engine = create_async_engine(database_url, **default_kwargs)

            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autocommit=False,
                autoflush=False,
            )
            logger.info(f"Initialized data source '{self.name}'")

    def attach(self, model: type) -> None:
        """Bind a model class to this data source"""
        if model not in self.models:
            self.models.append(model)
        model.data_source = self

    async def create_all(self):
        """Create the tables of every attached model (and their relations)"""
        if self._engine is None:
            raise RuntimeError(f"DatabaseSessionManager '{self.name}' not initialized")

        metadatas = []
        for model in self.models:
            if model.metadata not in metadatas:
                metadatas.append(model.metadata)

        async with self._engine.begin() as conn:
            for metadata in metadatas:
                await conn.run_sync(metadata.create_all)

    async def close(self):
        """Close database connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for database sessions"""
        if not self.initialized:
            raise RuntimeError(f"DatabaseSessionManager '{self.name}' not initialized")

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class DataSourceRegistry:
    """Named data sources and the models waiting to be attached to them"""

    def __init__(self):
        self._sources: Dict[str, DatabaseSessionManager] = {}
        self._pending: List[type] = []

    def register_model(self, model: type) -> None:
        """
        Remember a model that declares ``auto_attach``.

        The model is attached immediately when its data source is already
        registered, otherwise as soon as that data source is registered.
        """
        source_name = getattr(model, "auto_attach", None)
        if not source_name:
            return
        if source_name in self._sources:
            self._sources[source_name].attach(model)
        elif model not in self._pending:
            self._pending.append(model)

    def register(self, manager: DatabaseSessionManager) -> DatabaseSessionManager:
        """Register a data source under its name and attach pending models"""
        previous = self._sources.get(manager.name)
        if previous is not None and previous is not manager:
            self.unregister(manager.name)
        self._sources[manager.name] = manager
        for model in list(self._pending):
            if model.auto_attach == manager.name:
                manager.attach(model)
                self._pending.remove(model)
        return manager

    def get(self, name: str = DEFAULT_DATA_SOURCE) -> Optional[DatabaseSessionManager]:
        return self._sources.get(name)

    def unregister(self, name: str) -> None:
        manager = self._sources.pop(name, None)
        if manager is None:
            return
        for model in manager.models:
            if model not in self._pending:
                self._pending.append(model)
        manager.models = []


# Global data source registry
data_sources = DataSourceRegistry()
