"""Activity routes: cached or fresh activity, background refresh."""

from flask import Blueprint, jsonify, request

from hours_tracker.errors import AppError
from hours_tracker.extensions import get_activity_service
from hours_tracker.routes import error_response

activity_bp = Blueprint("activity", __name__)


def _parse_repos(value):
    if not value:
        return None
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [name.strip() for name in value.split(",") if name.strip()]


@activity_bp.route("/api/activity")
def get_activity():
    """Activity items for the tracked author.

    Query: days (int), repos (comma separated names), refresh=true to bypass the cache.
    """
    days = request.args.get("days", type=int)
    if days is not None and days < 1:
        return jsonify({"error": "days must be a positive integer"}), 400
    repos = _parse_repos(request.args.get("repos"))
    force_refresh = request.args.get("refresh", "").lower() == "true"

    try:
        service = get_activity_service()
        items = service.fetch_activity(days, repos, force_refresh=force_refresh)
        return jsonify({
            "items": [item.to_dict() for item in items],
            "count": len(items),
            "days": days or service.default_days,
        })
    except AppError:
        raise
    except Exception as e:
        return error_response("Internal server error", 500, f"Failed to fetch activity: {e}")


@activity_bp.route("/api/activity/refresh", methods=["POST"])
def start_refresh():
    """Start a background refresh; responds immediately with cached items and the job."""
    data = request.get_json(silent=True) or {}
    days = data.get("days")
    if days is not None and (not isinstance(days, int) or days < 1):
        return jsonify({"error": "days must be a positive integer"}), 400
    repos = _parse_repos(data.get("repos"))

    try:
        result = get_activity_service().start_background_refresh(days, repos)
        return jsonify({
            "items": [item.to_dict() for item in result["items"]],
            "cached": result["cached"],
            "job": result["job"],
        }), 202
    except AppError:
        raise
    except Exception as e:
        return error_response("Internal server error", 500, f"Failed to start refresh: {e}")
