from flask import Blueprint, jsonify, request

from ...utils.timezone_utils import TimezoneUtils

core_bp = Blueprint('core', __name__)


@core_bp.route("/health", methods=["GET", "HEAD"])
@core_bp.route("/ping", methods=["GET", "HEAD"])
def health_check():
    """Lightweight liveness endpoint for load balancers and uptime monitors."""
    if request.method == "HEAD":
        return "", 200
    return jsonify({"status": "ok", "timestamp": TimezoneUtils.format_datetime_for_api(TimezoneUtils.utc_now())})
