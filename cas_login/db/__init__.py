"""
Persistence Package

SQLAlchemy models for CAS-authenticated users and their access tokens.

Modules:
- models: declarative Base and the AccessToken model
- loader: builds mapped classes from JSON model definitions
- cas_user: CasUser behavior (defaults, lookup, token creation)
- session: async session manager and the named data source registry

CasUser is loaded from definitions/cas-user.json at import time and is
attached to the data source registered under "db".
"""

from pathlib import Path

from . import cas_user
from .loader import load_model
from .models import AccessToken, Base, DEFAULT_TTL
from .session import DEFAULT_DATA_SOURCE, DatabaseSessionManager, DataSourceRegistry, data_sources

DEFINITIONS_DIR = Path(__file__).parent / "definitions"

CasUser = cas_user.extend(
    load_model(DEFINITIONS_DIR / "cas-user.json", mixins=(cas_user.CasUserMixin,))
)

CasUser.auto_attach = DEFAULT_DATA_SOURCE
data_sources.register_model(CasUser)

__all__ = [
    "AccessToken",
    "Base",
    "CasUser",
    "DEFAULT_DATA_SOURCE",
    "DEFAULT_TTL",
    "DatabaseSessionManager",
    "DataSourceRegistry",
    "data_sources",
    "load_model",
]
