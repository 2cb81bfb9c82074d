"""KidPoints web API package (FastAPI + SQLModel)."""
from __future__ import annotations

from . import config, persistence
from .application import build_points_from_config, create_app
from .persistence import SQLStore, create_db_engine, init_db

__all__ = [
    "config",
    "persistence",
    "create_app",
    "build_points_from_config",
    "SQLStore",
    "create_db_engine",
    "init_db",
]
