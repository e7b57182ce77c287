"""
Helpers shared by the JSON blueprints.

Services are created once in create_app() and stored in app.config; routes
fetch them through get_service().
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Dict

from flask import current_app, request

from core.exceptions import StorybookWebError


class ServiceUnavailableError(StorybookWebError):
    """A service was not configured on the app (startup failed or test setup)."""


def get_service(key: str) -> Any:
    """
    Fetch a service stored in app.config.

    Raises:
        ServiceUnavailableError: If the service is missing
    """
    service = current_app.config.get(key)
    if service is None:
        raise ServiceUnavailableError(f"{key} unavailable", {"service": key})
    return service


def json_body() -> Dict[str, Any]:
    """Request JSON object, or an empty dict for a missing/invalid body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def error_response(message: str, status: int, **extra):
    body = {"success": False, "message": message}
    body.update(extra)
    return body, status


def login_required(view):
    """Reject the request with 401 unless the session is authenticated."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        session_machine = get_service("SESSION_MACHINE")
        if not session_machine.snapshot().is_authenticated:
            return error_response("Authentication required", 401, code="AUTH_REQUIRED")
        return view(*args, **kwargs)

    return wrapper
