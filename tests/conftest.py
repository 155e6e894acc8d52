import os
import sys

import pytest

# Make the project root importable when running from a checkout
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from hours_tracker import create_app
from hours_tracker.config import DEFAULT_CONFIG
from hours_tracker.database import Database, RepositoryDB, SettingsDB
from hours_tracker.services.activity_service import ActivityService
from tests.fakes import FakeBitbucketClient, JANE_RAW


@pytest.fixture
def config(tmp_path):
    cfg = dict(DEFAULT_CONFIG)
    cfg.update({
        "db_path": str(tmp_path / "test.db"),
        "workspaces": ["teamx"],
        "api_username": "jane",
        "api_token": "secret",
        "pr_author_display_name": "Jane Doe",
        "commit_author_raw": JANE_RAW,
        "retry_delay_seconds": 0,
    })
    return cfg


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "test.db")


@pytest.fixture
def settings_db(db):
    return SettingsDB(db)


@pytest.fixture
def repository_db(db):
    return RepositoryDB(db)


@pytest.fixture
def fake_client():
    client = FakeBitbucketClient()
    client.add_repository("teamx", "api")
    client.add_repository("teamx", "web")
    return client


@pytest.fixture
def service(config, fake_client, repository_db):
    return ActivityService(config, client=fake_client, repository_db=repository_db, background=False)


@pytest.fixture
def app(config, service):
    app = create_app(config, service=service)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
