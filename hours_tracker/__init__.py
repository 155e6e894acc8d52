"""Bitbucket Hours Tracker - Backend Package.

Provides the Flask application factory and the activity sync engine.
"""

from flask import Flask

from hours_tracker.config import get_config, get_db_path
from hours_tracker.errors import AppError
from hours_tracker.extensions import logger, EXTENSION_KEY
from hours_tracker.routes import register_blueprints, handle_app_error


def create_app(config=None, service=None):
    """Create and configure the Flask application.

    Args:
        config: Configuration dict; defaults to the loaded config.json/environment.
        service: Prebuilt ActivityService (tests inject one with fakes).
    """
    from hours_tracker.database import Database, RepositoryDB, get_repository_db
    from hours_tracker.services.activity_service import ActivityService

    # the process-wide database only backs the process-wide config
    shared_db = config is None
    config = config or get_config()
    if service is None:
        if shared_db:
            repository_db = get_repository_db()
        else:
            repository_db = RepositoryDB(Database(get_db_path(config)))
        service = ActivityService(config, repository_db=repository_db)
        logger.info(f"Tracking {service.author.label or 'no author'} across "
                    f"{len(config.get('workspaces') or [])} workspace(s)")

    app = Flask(__name__)
    app.config["HOURS_TRACKER"] = config
    app.extensions[EXTENSION_KEY] = service
    app.register_error_handler(AppError, handle_app_error)
    register_blueprints(app)
    return app
