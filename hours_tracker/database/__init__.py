"""Database package - re-exports DB classes and factory functions."""

import threading
from typing import Optional

from hours_tracker.config import get_config, get_db_path
from hours_tracker.database.base import Database
from hours_tracker.database.settings import SettingsDB
from hours_tracker.database.repositories import RepositoryDB
from hours_tracker.database.refresh_state import RefreshStateStore

# Thread-safe singleton instances
_db_lock = threading.Lock()

_db_instance: Optional[Database] = None
_settings_db: Optional[SettingsDB] = None
_repository_db: Optional[RepositoryDB] = None


def get_database() -> Database:
    global _db_instance
    if _db_instance is None:
        with _db_lock:
            if _db_instance is None:
                _db_instance = Database(get_db_path(get_config()))
    return _db_instance


def get_settings_db() -> SettingsDB:
    global _settings_db
    if _settings_db is None:
        db = get_database()
        with _db_lock:
            if _settings_db is None:
                _settings_db = SettingsDB(db)
    return _settings_db


def get_repository_db() -> RepositoryDB:
    global _repository_db
    if _repository_db is None:
        db = get_database()
        with _db_lock:
            if _repository_db is None:
                _repository_db = RepositoryDB(db)
    return _repository_db


__all__ = [
    "Database", "SettingsDB", "RepositoryDB", "RefreshStateStore",
    "get_database", "get_settings_db", "get_repository_db",
]
