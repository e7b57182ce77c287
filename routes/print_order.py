"""
Print order routes.

Handles the wizard (one active print order per session):
- POST /api/print-order                   - Start an order for a book
- GET  /api/print-order                   - Wizard snapshot plus apportioned cost
- PUT  /api/print-order/address           - Set the shipping address
- POST /api/print-order/next | /back      - Step navigation
- POST /api/print-order/shipping-options  - Load levels and price one
- PUT  /api/print-order/shipping-method   - Choose a level (reprices)
- PUT  /api/print-order/quantity          - Change quantity (reprices)
- POST /api/print-order/checkout          - Checkout URL for the reviewed order

And the placed orders:
- GET    /api/print-orders[/<id>[/status]]
- DELETE /api/print-orders/<id>
"""

from flask import Blueprint, current_app, request

from modules.apportionment import format_price
from routes.common import error_response, get_service, json_body, login_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

print_order_bp = Blueprint("print_order", __name__)


def _print_order_service():
    return get_service("PRINT_ORDER_SERVICE")


def _wizard_response(wizard, status: int = 200):
    """Wizard snapshot with the display split of the current quote."""
    body = {"success": True, "wizard": wizard.snapshot().to_dict(), "cost": None}

    apportionment = wizard.apportioned_cost(
        current_app.config["GBP_TO_USD_RATE"],
        current_app.config["GBP_DISPLAY_COUNTRIES"],
    )
    if apportionment is not None:
        cost = apportionment.to_dict()
        cost["display"] = {
            "printing": format_price(apportionment.printing, apportionment.currency),
            "shipping": format_price(apportionment.shipping, apportionment.currency),
            "total": format_price(apportionment.total, apportionment.currency),
        }
        body["cost"] = cost

    return body, status


def _active_wizard():
    return _print_order_service().wizard


def _no_wizard():
    return error_response("No print order in progress", 404)


# =============================================================================
# WIZARD
# =============================================================================

@print_order_bp.route("/api/print-order", methods=["POST"])
@login_required
def start_order():
    data = json_body()
    book_id = data.get("bookId")
    if not book_id:
        return error_response("bookId is required", 400)

    wizard = _print_order_service().start(book_id, quantity=data.get("quantity", 1))
    return _wizard_response(wizard, 201)


@print_order_bp.route("/api/print-order", methods=["GET"])
@login_required
def get_order_wizard():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order", methods=["DELETE"])
@login_required
def discard_order_wizard():
    _print_order_service().discard()
    return {"success": True}


@print_order_bp.route("/api/print-order/address", methods=["PUT"])
@login_required
def set_address():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    wizard.set_shipping_address(json_body())
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/next", methods=["POST"])
@login_required
def next_step():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    wizard.advance()
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/back", methods=["POST"])
@login_required
def previous_step():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    wizard.back()
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/shipping-options", methods=["POST"])
@login_required
def shipping_options():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    wizard.load_shipping_options()
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/shipping-method", methods=["PUT"])
@login_required
def shipping_method():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    level = json_body().get("shippingLevel")
    if not level:
        return error_response("shippingLevel is required", 400)
    wizard.select_shipping_method(level)
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/quantity", methods=["PUT"])
@login_required
def quantity():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    wizard.set_quantity(json_body().get("quantity"))
    return _wizard_response(wizard)


@print_order_bp.route("/api/print-order/checkout", methods=["POST"])
@login_required
def checkout():
    wizard = _active_wizard()
    if wizard is None:
        return _no_wizard()
    checkout_url = wizard.create_checkout()
    return {"success": True, "checkoutUrl": checkout_url}, 201


# =============================================================================
# PLACED ORDERS
# =============================================================================

@print_order_bp.route("/api/print-orders", methods=["GET"])
@login_required
def list_orders():
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", 10))
    except ValueError:
        return error_response("page and limit must be numbers", 400)
    return _print_order_service().list_orders(page, limit, request.args.get("status"))


@print_order_bp.route("/api/print-orders/<order_id>", methods=["GET"])
@login_required
def get_order(order_id: str):
    return _print_order_service().get_order(order_id)


@print_order_bp.route("/api/print-orders/<order_id>", methods=["DELETE"])
@login_required
def cancel_order(order_id: str):
    return _print_order_service().cancel_order(order_id)


@print_order_bp.route("/api/print-orders/<order_id>/status", methods=["GET"])
@login_required
def order_status(order_id: str):
    return _print_order_service().get_order_status(order_id)
