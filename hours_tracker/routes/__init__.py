"""Route blueprints registration and shared error responses."""

from flask import jsonify

from hours_tracker.extensions import logger


def error_response(message, status, log_message=None, code=None):
    """Log (optionally) and build a JSON error response."""
    if log_message:
        logger.error(log_message)
    body = {"error": message}
    if code:
        body["code"] = code
    return jsonify(body), status


def handle_app_error(error):
    """Error handler for AppError and subclasses (auth failures map to 401)."""
    log_message = f"{error.code}: {error.message}" if error.status >= 500 else None
    return error_response(error.message, error.status, log_message, code=error.code)


def register_blueprints(app):
    """Register all route blueprints with the Flask app."""
    from hours_tracker.routes.activity_routes import activity_bp
    from hours_tracker.routes.refresh_routes import refresh_bp
    from hours_tracker.routes.repo_routes import repo_bp
    from hours_tracker.routes.cache_routes import cache_bp
    from hours_tracker.routes.auth_routes import auth_bp

    app.register_blueprint(activity_bp)
    app.register_blueprint(refresh_bp)
    app.register_blueprint(repo_bp)
    app.register_blueprint(cache_bp)
    app.register_blueprint(auth_bp)
