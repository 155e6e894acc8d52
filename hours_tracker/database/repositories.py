"""RepositoryDB - registry of discovered repositories and the user's selection."""

import sqlite3
import logging
from typing import Dict, Any, List, Optional

from hours_tracker.database.settings import SettingsDB
from hours_tracker.models import Repository

logger = logging.getLogger(__name__)

SELECTION_KEY = "selected_repositories"


class RepositoryDB:
    """Database operations for the repository registry."""

    def __init__(self, db):
        self.db = db
        self.settings = SettingsDB(db)

    def _get_connection(self) -> sqlite3.Connection:
        return self.db._get_connection()

    @staticmethod
    def _row_to_repository(row) -> Repository:
        return Repository(
            id=row["id"],
            workspace=row["workspace"],
            name=row["name"],
            language=row["language"],
            updated_on=row["updated_on"],
            is_enabled=bool(row["is_enabled"]),
            is_primary=bool(row["is_primary"]),
        )

    def sync_discovered(self, repositories: List[Repository]) -> List[Repository]:
        """Upsert discovered repositories, refreshing metadata but keeping user flags."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            for repo in repositories:
                cursor.execute("""
                    INSERT INTO repositories (workspace, name, language, updated_on)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(workspace, name) DO UPDATE SET
                        language = excluded.language,
                        updated_on = excluded.updated_on
                """, (repo.workspace, repo.name, repo.language, repo.updated_on))
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Synced {len(repositories)} discovered repositories")
        return self.list_all()

    def list_all(self) -> List[Repository]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM repositories ORDER BY name, workspace")
            return [self._row_to_repository(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_enabled(self) -> List[Repository]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM repositories WHERE is_enabled = 1 ORDER BY name, workspace")
            return [self._row_to_repository(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get(self, repo_id: int) -> Optional[Repository]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM repositories WHERE id = ?", (repo_id,))
            row = cursor.fetchone()
            return self._row_to_repository(row) if row else None
        finally:
            conn.close()

    def set_enabled(self, repo_id: int, is_enabled: bool) -> Dict[str, Any]:
        """Enable or disable one repository."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE repositories SET is_enabled = ? WHERE id = ?",
                (1 if is_enabled else 0, repo_id)
            )
            conn.commit()
            updated = cursor.rowcount > 0
        finally:
            conn.close()

        if not updated:
            return {"success": False, "message": f"Repository {repo_id} not found"}

        repo = self.get(repo_id)
        state = "enabled" if is_enabled else "disabled"
        logger.info(f"Repository {repo.full_name} {state}")
        return {
            "success": True,
            "message": f"Repository {repo.full_name} {state}",
            "is_enabled": repo.is_enabled,
            "repository": repo.to_dict(),
        }

    def save_selection(self, names: List[str]) -> Dict[str, Any]:
        """Persist the user's explicit repository selection (names or workspace/name)."""
        cleaned = [name.strip() for name in names if name and name.strip()]
        self.settings.set_setting(SELECTION_KEY, cleaned)
        logger.info(f"Saved repository selection: {len(cleaned)} repositories")
        return {"success": True, "selected": cleaned}

    def get_selection(self) -> List[str]:
        selection = self.settings.get_setting(SELECTION_KEY, [])
        return selection if isinstance(selection, list) else []
