"""Authentication routes: /api/user."""

from flask import Blueprint, jsonify

from hours_tracker.extensions import get_activity_service

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/api/user")
def get_user():
    """Verify the configured Bitbucket credentials and return the user."""
    result = get_activity_service().test_authentication()
    if not result["success"]:
        return jsonify({"error": result["message"], "code": "AUTH_ERROR"}), 401
    return jsonify({"user": result["user"], "message": result["message"]})
