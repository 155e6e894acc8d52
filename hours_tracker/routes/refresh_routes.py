"""Refresh job routes: status polling, cancellation, acknowledgement."""

from flask import Blueprint, jsonify

from hours_tracker.extensions import get_activity_service

refresh_bp = Blueprint("refresh", __name__)


@refresh_bp.route("/api/refresh-jobs/<job_id>", methods=["GET"])
def get_job_status(job_id):
    """Current status of a refresh job."""
    status = get_activity_service().check_job_status(job_id)
    if status is None:
        return jsonify({"error": "Job not found"}), 404
    return jsonify({"job": status})


@refresh_bp.route("/api/refresh-jobs/<job_id>", methods=["DELETE"])
def cancel_job(job_id):
    service = get_activity_service()
    if service.check_job_status(job_id) is None:
        return jsonify({"error": "Job not found"}), 404
    cancelled = service.cancel_job(job_id)
    return jsonify({
        "cancelled": cancelled,
        "job": service.check_job_status(job_id),
    })


@refresh_bp.route("/api/refresh-jobs/<job_id>/acknowledge", methods=["POST"])
def acknowledge_job(job_id):
    """Forget a finished job."""
    service = get_activity_service()
    if service.check_job_status(job_id) is None:
        return jsonify({"error": "Job not found"}), 404
    if not service.acknowledge_job(job_id):
        return jsonify({"error": "Job is still running"}), 409
    return jsonify({"message": "Job acknowledged", "job_id": job_id})
