"""
Operational routes.

Handles:
- /health - Health check endpoint with service status
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    session_machine = current_app.config.get("SESSION_MACHINE")
    if session_machine:
        snapshot = session_machine.snapshot()
        health_status["checks"]["session"] = snapshot.phase.value
        health_status["checks"]["auth_confidence"] = snapshot.confidence.value
    else:
        health_status["checks"]["session"] = "not_initialized"
        health_status["status"] = "degraded"

    api_client = current_app.config.get("API_CLIENT")
    health_status["checks"]["api_base_url"] = api_client.base_url if api_client else None

    interceptor = current_app.config.get("INTERCEPTOR")
    if interceptor:
        health_status["checks"]["forced_clears"] = interceptor.cleared_count

    for key, name in (("CREDIT_SERVICE", "credits"), ("PRINT_ORDER_SERVICE", "print_orders")):
        if current_app.config.get(key):
            health_status["checks"][name] = "initialized"
        else:
            health_status["checks"][name] = "not_initialized"
            health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
