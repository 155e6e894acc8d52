"""Application configuration loaded from config.json and the environment."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

# Project root is one level up from hours_tracker/
PROJECT_ROOT = Path(__file__).parent.parent

# Database file path (overridden by config "db_path" or HOURS_DB_PATH)
DB_PATH = PROJECT_ROOT / "hours_tracker.db"

DEFAULT_CONFIG: Dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 5050,
    "debug": False,
    "db_path": None,
    "base_url": "https://api.bitbucket.org/2.0",
    "workspaces": [],
    "api_username": "",
    "api_token": "",
    "pr_author_display_name": "",
    "commit_author_raw": "",
    "default_days": 12,
    "pr_max_pages": 3,
    "pr_commit_max_pages": 2,
    "repo_commit_max_pages": 3,
    "repo_list_max_pages": 3,
    "max_expanded_prs": 20,
    "recent_pr_days": 3,
    "repositories_cache_ttl_minutes": 60,
    "cache_maxsize": 256,
    "request_timeout_seconds": 30,
    "max_retries": 3,
    "retry_delay_seconds": 2,
    "max_retry_delay_seconds": 120,
    "refresh_max_workers": 1,
    "job_stale_minutes": 15,
    "job_max_age_minutes": 30,
    "poll_interval_seconds": 3,
}

# environment variable -> config key
ENV_OVERRIDES = {
    "BITBUCKET_USERNAME": "api_username",
    "BITBUCKET_API_TOKEN": "api_token",
    "BITBUCKET_PR_AUTHOR_DISPLAY_NAME": "pr_author_display_name",
    "BITBUCKET_COMMIT_AUTHOR_RAW": "commit_author_raw",
    "BITBUCKET_BASE_URL": "base_url",
    "HOURS_DB_PATH": "db_path",
}


def _apply_env(config: Dict[str, Any]) -> None:
    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            config[key] = value
    workspaces = os.environ.get("BITBUCKET_WORKSPACES")
    if workspaces:
        config["workspaces"] = [ws.strip() for ws in workspaces.split(",") if ws.strip()]


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration: defaults, then config.json (if present), then environment.

    Args:
        config_path: Optional path to config file. Defaults to PROJECT_ROOT/config.json.

    Returns:
        Configuration dictionary.
    """
    if config_path is None:
        config_path = PROJECT_ROOT / "config.json"
    config = dict(DEFAULT_CONFIG)
    if Path(config_path).exists():
        with open(config_path) as f:
            config.update(json.load(f))
    _apply_env(config)
    if isinstance(config.get("workspaces"), str):
        config["workspaces"] = [ws.strip() for ws in config["workspaces"].split(",") if ws.strip()]
    return config


def get_db_path(config: Dict[str, Any]) -> Path:
    """Resolve the SQLite path from config, with fallback to DB_PATH."""
    db_path = config.get("db_path")
    return Path(db_path) if db_path else DB_PATH


# Singleton config instance
_config: Dict[str, Any] = None


def get_config() -> Dict[str, Any]:
    """Get the singleton config dictionary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
