import pytest

import hours_tracker.config as config_module
import hours_tracker.database as database
from hours_tracker import create_app
from hours_tracker.extensions import EXTENSION_KEY


@pytest.fixture
def process_config(config, monkeypatch):
    """Point the process-wide config at a temp database and reset the DB singletons."""
    monkeypatch.setattr(config_module, "_config", config)
    monkeypatch.setattr(database, "_db_instance", None)
    monkeypatch.setattr(database, "_settings_db", None)
    monkeypatch.setattr(database, "_repository_db", None)
    return config


def test_singletons_share_one_database(process_config):
    settings_db = database.get_settings_db()
    repository_db = database.get_repository_db()

    assert database.get_settings_db() is settings_db
    assert settings_db.db is database.get_database()
    assert repository_db.db is database.get_database()
    assert str(database.get_database().db_path) == process_config["db_path"]


def test_default_app_uses_shared_repository_db(process_config):
    app = create_app()

    service = app.extensions[EXTENSION_KEY]
    assert service.repository_db is database.get_repository_db()
    assert app.config["HOURS_TRACKER"] is process_config


def test_explicit_config_gets_its_own_database(process_config, tmp_path):
    other = dict(process_config, db_path=str(tmp_path / "other.db"))

    service = create_app(other).extensions[EXTENSION_KEY]

    assert service.repository_db is not database.get_repository_db()
    assert str(service.repository_db.db.db_path) == other["db_path"]
