"""Cache management routes."""

from flask import Blueprint, jsonify, request

from hours_tracker.extensions import get_activity_service

cache_bp = Blueprint("cache", __name__)


@cache_bp.route("/api/clear-cache", methods=["POST"])
def clear_cache():
    """Clear cached activity; a pattern limits it to matching keys."""
    data = request.get_json(silent=True) or {}
    pattern = data.get("pattern")
    removed = get_activity_service().invalidate_cache(pattern)
    return jsonify({"message": "Cache cleared", "pattern": pattern, "removed": removed})


@cache_bp.route("/api/cache-stats")
def cache_stats():
    return jsonify(get_activity_service().cache.stats())
