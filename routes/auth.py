"""
Session and account routes.

Handles:
- /api/session                   - Current session snapshot
- /api/session/check             - Resolve the session with the server (once)
- /api/auth/*                    - Login, logout, registration, verification,
                                   password reset
- /api/profile*                  - Profile, password change, email change,
                                   language preference

Typed errors raised by the session service are turned into JSON by the
error handlers registered in create_app().
"""

from flask import Blueprint, request

from routes.common import error_response, get_service, json_body, login_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

auth_bp = Blueprint("auth", __name__)


def _session_machine():
    return get_service("SESSION_MACHINE")


def _ok(snapshot, status: int = 200):
    return {"success": True, "session": snapshot.to_dict()}, status


# =============================================================================
# SESSION
# =============================================================================

@auth_bp.route("/api/session", methods=["GET"])
def current_session():
    """Current session snapshot (balance projected from the credit ledger)."""
    return _ok(_session_machine().snapshot())


@auth_bp.route("/api/session/check", methods=["POST"])
def check_session():
    """
    Resolve the session with the server.

    Runs at most once per process; later calls just report the state.
    """
    session_machine = _session_machine()
    performed = session_machine.begin_session_check()
    body, status = _ok(session_machine.snapshot())
    body["checkPerformed"] = performed
    return body, status


# =============================================================================
# AUTHENTICATION
# =============================================================================

@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    data = json_body()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return error_response("Email and password are required", 400)

    return _ok(_session_machine().login(email, password))


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    return _ok(_session_machine().logout())


@auth_bp.route("/api/auth/register", methods=["POST"])
def register():
    data = json_body()
    missing = [name for name in ("firstName", "lastName", "email", "password") if not data.get(name)]
    if missing:
        return error_response(
            "Missing required fields",
            400,
            errors={name: "This field is required" for name in missing},
        )

    return _ok(_session_machine().register(data), 201)


@auth_bp.route("/api/auth/verify-email", methods=["GET"])
def verify_email():
    token = request.args.get("token", "")
    if not token:
        return error_response("Verification token is required", 400)
    return _ok(_session_machine().verify_email(token))


@auth_bp.route("/api/auth/resend-verification", methods=["POST"])
def resend_verification():
    email = (json_body().get("email") or "").strip()
    if not email:
        return error_response("Email is required", 400)
    return _ok(_session_machine().resend_verification(email))


@auth_bp.route("/api/auth/forgot-password", methods=["POST"])
def forgot_password():
    email = (json_body().get("email") or "").strip()
    if not email:
        return error_response("Email is required", 400)
    return _ok(_session_machine().forgot_password(email))


@auth_bp.route("/api/auth/reset-password", methods=["POST"])
def reset_password():
    data = json_body()
    token = data.get("token") or ""
    password = data.get("password") or ""
    if not token or not password:
        return error_response("Token and password are required", 400)
    return _ok(_session_machine().reset_password(token, password))


# =============================================================================
# PROFILE
# =============================================================================

@auth_bp.route("/api/profile", methods=["PUT"])
@login_required
def update_profile():
    data = json_body()
    if not data:
        return error_response("No profile fields given", 400)
    return _ok(_session_machine().update_profile(data))


@auth_bp.route("/api/profile/password-change", methods=["POST"])
@login_required
def request_password_change():
    return _ok(_session_machine().request_password_change())


@auth_bp.route("/api/profile/verify-email-change", methods=["GET"])
def verify_email_change():
    token = request.args.get("token", "")
    if not token:
        return error_response("Verification token is required", 400)
    return _ok(_session_machine().verify_email_change(token))


@auth_bp.route("/api/profile/language", methods=["PUT"])
@login_required
def update_language():
    language = json_body().get("language") or ""
    if not language:
        return error_response("Language is required", 400)
    return _ok(_session_machine().update_language_preference(language))


@auth_bp.route("/api/session/error", methods=["DELETE"])
def clear_error():
    """Dismiss the last error and the verification-sent notice."""
    session_machine = _session_machine()
    session_machine.clear_error()
    session_machine.clear_email_verification_sent()
    return _ok(session_machine.snapshot())
