"""
CAS login for FastAPI applications.

Exports the CasUser model (attached to the "db" data source) and the
CasConfigurator that registers CAS providers on an application.
"""

from .auth import CasConfigurator
from .db import CasUser, load_model

__all__ = [
    "CasConfigurator",
    "CasUser",
    "load_model",
]
