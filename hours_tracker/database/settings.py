"""SettingsDB - key-value user settings stored as JSON."""

import json
import sqlite3
import logging
from typing import Any

logger = logging.getLogger(__name__)


class SettingsDB:
    """Key-value access to the user_settings table."""

    def __init__(self, db):
        self.db = db

    def _get_connection(self) -> sqlite3.Connection:
        return self.db._get_connection()

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value (JSON parsed) or default.

        A value that is not valid JSON is returned as the raw string; callers that
        need structured data must check the type.
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM user_settings WHERE key = ?", (key,))
            row = cursor.fetchone()
            if row and row["value"]:
                try:
                    return json.loads(row["value"])
                except json.JSONDecodeError:
                    logger.warning(f"Setting {key} is not valid JSON")
                    return row["value"]
            return default
        finally:
            conn.close()

    def set_setting(self, key: str, value: Any) -> None:
        """Store a value JSON encoded, replacing any previous one."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO user_settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, json.dumps(value)))
            conn.commit()
        finally:
            conn.close()

    def delete_setting(self, key: str) -> bool:
        """Delete a setting. Returns True if deleted."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM user_settings WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
