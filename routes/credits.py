"""
Credit routes.

Handles:
- /api/credits            - Credits snapshot (balance, history page, flags)
- /api/credits/balance    - Refresh the balance from the server
- /api/credits/history    - Load a history page
- /api/credits/packages   - Purchase packages (with shortfall package)
- /api/credits/purchase   - Start a checkout, returns the redirect URL
- /api/credits/verify     - Confirm a completed checkout
- /api/credits/spend      - Optimistic local deduction after a paid action
"""

from flask import Blueprint, request

from routes.common import error_response, get_service, json_body, login_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

credits_bp = Blueprint("credits", __name__)


def _credit_service():
    return get_service("CREDIT_SERVICE")


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@credits_bp.route("/api/credits", methods=["GET"])
@login_required
def credits_snapshot():
    return {"success": True, "credits": _credit_service().snapshot().to_dict()}


@credits_bp.route("/api/credits/balance", methods=["GET"])
@login_required
def refresh_balance():
    balance = _credit_service().fetch_balance()
    return {"success": True, "balance": balance}


@credits_bp.route("/api/credits/history", methods=["GET"])
@login_required
def credit_history():
    page = max(1, _int_arg("page", 1))
    limit = _int_arg("limit", 0) or None
    snapshot = _credit_service().fetch_history(page=page, limit=limit)
    return {
        "success": True,
        "transactions": [t.to_dict() for t in snapshot.transactions],
        "pagination": snapshot.pagination.to_dict(),
    }


@credits_bp.route("/api/credits/packages", methods=["GET"])
def credit_packages():
    required = max(0, _int_arg("required", 0))
    packages = _credit_service().credit_packages(required)
    return {"success": True, "packages": [p.to_dict() for p in packages]}


@credits_bp.route("/api/credits/purchase", methods=["POST"])
@login_required
def purchase():
    data = json_body()
    if data.get("creditAmount") is None:
        return error_response("creditAmount is required", 400)

    purchase_session = _credit_service().create_purchase_session(
        data.get("creditAmount"),
        context=data.get("context") or "pricing",
    )
    return {"success": True, "purchaseSession": purchase_session.to_dict()}, 201


@credits_bp.route("/api/credits/verify", methods=["POST"])
@login_required
def verify_purchase():
    session_id = json_body().get("sessionId") or request.args.get("session_id", "")
    if not session_id:
        return error_response("sessionId is required", 400)

    snapshot = _credit_service().verify_purchase(session_id)
    return {"success": True, "credits": snapshot.to_dict()}


@credits_bp.route("/api/credits/spend", methods=["POST"])
@login_required
def spend():
    try:
        amount = int(json_body().get("amount"))
    except (TypeError, ValueError):
        return error_response("amount must be a whole number", 400)
    if amount < 0:
        return error_response("amount must not be negative", 400)

    balance = _credit_service().spend_credits(amount)
    return {"success": True, "balance": balance}
