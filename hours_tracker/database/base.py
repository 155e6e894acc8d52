"""Database base class - connection management and schema init."""

import sqlite3
import logging
from pathlib import Path
from typing import Optional

from hours_tracker.config import DB_PATH

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager for the hours tracker."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or DB_PATH
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()

            # Key-value settings: repository selection, persisted refresh status
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_settings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    value TEXT,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Repository registry
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS repositories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workspace TEXT NOT NULL,
                    name TEXT NOT NULL,
                    language TEXT,
                    updated_on TEXT,
                    is_enabled BOOLEAN DEFAULT 1,
                    is_primary BOOLEAN DEFAULT 0,
                    discovered_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(workspace, name)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_repositories_enabled
                ON repositories(is_enabled)
            """)

            conn.commit()
            logger.info(f"Database initialized at {self.db_path}")
        finally:
            conn.close()
