"""Repository registry routes: listing, enable/disable, saved selection."""

from flask import Blueprint, jsonify, request

from hours_tracker.errors import AppError
from hours_tracker.extensions import get_activity_service
from hours_tracker.routes import error_response

repo_bp = Blueprint("repo", __name__)


@repo_bp.route("/api/repositories")
def get_repositories():
    """All repositories of the configured workspaces."""
    force_refresh = request.args.get("refresh", "").lower() == "true"
    try:
        repositories = get_activity_service().list_all_repositories(force_refresh=force_refresh)
        return jsonify({"repositories": [r.to_dict() for r in repositories]})
    except AppError:
        raise
    except Exception as e:
        return error_response("Internal server error", 500, f"Failed to list repositories: {e}")


@repo_bp.route("/api/repositories/enabled")
def get_enabled_repositories():
    try:
        repositories = get_activity_service().list_user_enabled_repositories()
        return jsonify({"repositories": [r.to_dict() for r in repositories]})
    except AppError:
        raise
    except Exception as e:
        return error_response("Internal server error", 500, f"Failed to list enabled repositories: {e}")


@repo_bp.route("/api/repositories/<int:repo_id>/enabled", methods=["PUT"])
def set_repository_enabled(repo_id):
    data = request.get_json(silent=True)
    if not data or not isinstance(data.get("is_enabled"), bool):
        return jsonify({"error": "Missing boolean 'is_enabled' in request body"}), 400

    result = get_activity_service().set_repository_enabled(repo_id, data["is_enabled"])
    if not result["success"]:
        return jsonify(result), 404
    return jsonify(result)


@repo_bp.route("/api/repositories/selection", methods=["GET"])
def get_selection():
    return jsonify({"repos": get_activity_service().get_selection()})


@repo_bp.route("/api/repositories/selection", methods=["POST"])
def save_selection():
    """Save the repositories used when a request names none."""
    data = request.get_json(silent=True)
    if not data or not isinstance(data.get("repos"), list):
        return jsonify({"error": "Missing 'repos' list in request body"}), 400

    result = get_activity_service().save_selection(data["repos"])
    return jsonify(result), (200 if result["success"] else 500)
