"""
Tests for the print order wizard.

Cost calculations go through the fake transport; races are staged with
events inside route handlers so a slow response can be held back while the
wizard moves on.
"""

import threading

import pytest

from core.exceptions import ApiError, ServerError, ValidationError, WizardStateError
from models.print_order import PrintOrderStep
from services.print_order_service import (
    DEFAULT_SHIPPING_OPTIONS,
    PrintOrderService,
    PrintOrderWizard,
)


ADDRESS = {
    "name": "Ada Lovelace",
    "street1": "1 Main St",
    "city": "Springfield",
    "state_code": "il",
    "postcode": "62701",
    "country_code": "us",
    "phone_number": "+1 555 123 4567",
    "email": "ada@example.com",
}

OPTIONS = [
    {"level": "MAIL", "name": "Mail", "estimatedDays": "7-10", "cost": "4.99"},
    {"level": "GROUND", "name": "Ground", "estimatedDays": "3-5", "cost": 7.5},
]


def cost_body(total_usd, shipping=5.0, credits=None):
    return {
        "success": True,
        "data": {
            "cost_breakdown": {
                "line_items": [{"total_cost_incl_tax": "8.00"}],
                "fulfillment": {"total_cost_incl_tax": "2.00"},
                "shipping": {"total_cost_incl_tax": shipping},
            },
            "total_cost_usd": total_usd,
            "total_cost_gbp": round(total_usd / 1.27, 2),
            "total_cost_credits": credits if credits is not None else int(total_usd * 100),
        },
    }


# Fixtures

@pytest.fixture
def wizard(api_client):
    return PrintOrderWizard(api_client, "book-1", quantity=1, max_quantity=10)


@pytest.fixture
def method_step(wizard):
    """Wizard with a valid address, moved to the shipping method step."""
    wizard.set_shipping_address(ADDRESS)
    wizard.advance()
    return wizard


class TestAddressStep:
    """Test the shipping address step."""

    def test_address_is_cleaned(self, wizard):
        address = wizard.set_shipping_address(dict(ADDRESS, name="  <b>Ada</b> Lovelace  "))

        assert address.name == "Ada Lovelace"
        assert address.state_code == "IL"
        assert address.country_code == "US"

    def test_invalid_address_blocks_advance(self, wizard):
        wizard.set_shipping_address(dict(ADDRESS, postcode="ABC"))

        with pytest.raises(ValidationError) as exc_info:
            wizard.advance()

        assert "postcode" in exc_info.value.field_errors
        assert wizard.snapshot().step is PrintOrderStep.SHIPPING_ADDRESS

    def test_valid_address_advances(self, wizard):
        wizard.set_shipping_address(ADDRESS)

        assert wizard.advance().step is PrintOrderStep.SHIPPING_METHOD

    def test_address_locked_after_address_step(self, method_step):
        with pytest.raises(WizardStateError):
            method_step.set_shipping_address(ADDRESS)

    def test_cannot_go_back_from_first_step(self, wizard):
        with pytest.raises(WizardStateError) as exc_info:
            wizard.back()

        assert exc_info.value.step == "SHIPPING_ADDRESS"
        assert exc_info.value.to_dict()["code"] == "INVALID_STATE"

    def test_book_id_required(self, api_client):
        with pytest.raises(ValueError):
            PrintOrderWizard(api_client, "")


class TestShippingOptions:
    """Test loading and selecting shipping levels."""

    def test_options_from_api_and_auto_select(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", json_body={"success": True, "data": OPTIONS})
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))

        snapshot = method_step.load_shipping_options()

        assert snapshot.options_from_api is True
        assert [o.level for o in snapshot.shipping_options] == ["MAIL", "GROUND"]
        assert snapshot.shipping_options[0].cost == pytest.approx(4.99)
        assert snapshot.shipping_level == "MAIL"
        assert snapshot.breakdown.total_cost_usd == 18.0
        sent = fake_api.calls_to("POST", "/api/print-orders/shipping-options")[0]["json"]
        assert sent["bookId"] == "book-1"
        assert sent["quantity"] == 1
        assert sent["shippingAddress"]["postcode"] == "62701"

    def test_falls_back_to_defaults(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", status=500, json_body={"message": "down"})
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))

        snapshot = method_step.load_shipping_options()

        assert snapshot.options_from_api is False
        assert snapshot.shipping_options == DEFAULT_SHIPPING_OPTIONS
        assert snapshot.shipping_level == "MAIL"

    def test_empty_option_list_falls_back(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", json_body={"success": True, "data": []})
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))

        assert method_step.load_shipping_options().shipping_options == DEFAULT_SHIPPING_OPTIONS

    def test_previous_level_kept_when_still_offered(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", json_body={"success": True, "data": OPTIONS})
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))
        method_step.load_shipping_options()
        method_step.select_shipping_method("GROUND")

        snapshot = method_step.load_shipping_options()

        assert snapshot.shipping_level == "GROUND"

    def test_failed_initial_price_is_recorded(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", json_body={"success": True, "data": OPTIONS})
        fake_api.add("POST", "/api/print-orders/calculate-cost", status=502, json_body={"message": "Upstream failed"})

        snapshot = method_step.load_shipping_options()

        assert snapshot.breakdown is None
        assert snapshot.error == "Upstream failed"
        assert snapshot.is_recalculating is False

    def test_unknown_level_rejected(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/shipping-options", json_body={"success": True, "data": OPTIONS})
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))
        method_step.load_shipping_options()

        with pytest.raises(ValidationError) as exc_info:
            method_step.select_shipping_method("TELEPORT")

        assert "shippingLevel" in exc_info.value.field_errors
        assert method_step.snapshot().shipping_level != "TELEPORT"
        assert len(fake_api.calls_to("POST", "/api/print-orders/calculate-cost")) == 1

    def test_options_require_method_step(self, wizard):
        with pytest.raises(WizardStateError):
            wizard.load_shipping_options()


class TestCostRecalculation:
    """Test which cost results are applied."""

    def test_request_payload(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))

        method_step.select_shipping_method("EXPRESS")

        sent = fake_api.calls_to("POST", "/api/print-orders/calculate-cost")[0]["json"]
        assert sent["bookId"] == "book-1"
        assert sent["quantity"] == 1
        assert sent["shippingLevel"] == "EXPRESS"
        assert sent["shippingAddress"]["city"] == "Springfield"

    def test_unsuccessful_body_raises(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body={"success": False, "message": "No route"})

        with pytest.raises(ApiError) as exc_info:
            method_step.select_shipping_method("MAIL")

        assert exc_info.value.message == "No route"
        assert method_step.snapshot().error == "No route"

    def test_quantity_change_reprices(self, fake_api, method_step):
        fake_api.add(
            "POST",
            "/api/print-orders/calculate-cost",
            handler=lambda call: (200, cost_body(10.0 * call["json"]["quantity"])),
        )
        method_step.select_shipping_method("MAIL")

        breakdown = method_step.set_quantity(3)

        assert breakdown.total_cost_usd == 30.0
        assert method_step.snapshot().quantity == 3

    @pytest.mark.parametrize("quantity", [0, 11, "many", None])
    def test_quantity_bounds(self, wizard, quantity):
        with pytest.raises(ValidationError):
            wizard.set_quantity(quantity)

    def test_quantity_on_address_step_does_not_price(self, fake_api, wizard):
        assert wizard.set_quantity(2) is None
        assert fake_api.calls == []

    def test_newest_request_wins(self, fake_api, method_step):
        """A slow MAIL quote must not overwrite the EXPRESS quote sent after it."""
        mail_sent = threading.Event()
        release_mail = threading.Event()

        def calculate(call):
            if call["json"]["shippingLevel"] == "MAIL":
                mail_sent.set()
                release_mail.wait(5)
                return 200, cost_body(12.0)
            return 200, cost_body(30.0)

        fake_api.add("POST", "/api/print-orders/calculate-cost", handler=calculate)
        results = {}

        slow = threading.Thread(
            target=lambda: results.setdefault("mail", method_step.select_shipping_method("MAIL"))
        )
        slow.start()
        assert mail_sent.wait(5)

        results["express"] = method_step.select_shipping_method("EXPRESS")
        release_mail.set()
        slow.join(timeout=5)

        assert results["mail"] is None
        assert results["express"].total_cost_usd == 30.0
        snapshot = method_step.snapshot()
        assert snapshot.breakdown.total_cost_usd == 30.0
        assert snapshot.shipping_level == "EXPRESS"

    def test_result_after_leaving_step_is_dropped(self, fake_api, method_step):
        """A quote landing after the user went back must not reappear."""
        sent = threading.Event()
        release = threading.Event()

        def calculate(call):
            sent.set()
            release.wait(5)
            return 200, cost_body(18.0)

        fake_api.add("POST", "/api/print-orders/calculate-cost", handler=calculate)
        results = {}

        worker = threading.Thread(
            target=lambda: results.setdefault("cost", method_step.select_shipping_method("MAIL"))
        )
        worker.start()
        assert sent.wait(5)

        method_step.back()
        release.set()
        worker.join(timeout=5)

        snapshot = method_step.snapshot()
        assert results["cost"] is None
        assert snapshot.step is PrintOrderStep.SHIPPING_ADDRESS
        assert snapshot.breakdown is None
        assert snapshot.is_recalculating is False

    def test_stale_failure_does_not_set_error(self, fake_api, method_step):
        sent = threading.Event()
        release = threading.Event()

        def calculate(call):
            sent.set()
            release.wait(5)
            return 500, {"message": "Too late to matter"}

        fake_api.add("POST", "/api/print-orders/calculate-cost", handler=calculate)
        errors = []

        def select():
            try:
                method_step.select_shipping_method("MAIL")
            except ServerError as e:
                errors.append(e)

        worker = threading.Thread(target=select)
        worker.start()
        assert sent.wait(5)

        method_step.back()
        release.set()
        worker.join(timeout=5)

        assert len(errors) == 1
        assert method_step.snapshot().error is None


class TestReviewStep:
    """Test the frozen quote and checkout."""

    @pytest.fixture
    def priced(self, fake_api, method_step):
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0, credits=1800))
        method_step.select_shipping_method("GROUND")
        return method_step

    def test_advance_requires_price(self, method_step):
        with pytest.raises(WizardStateError):
            method_step.advance()

    def test_advance_freezes_quote(self, priced):
        snapshot = priced.advance()

        assert snapshot.step is PrintOrderStep.REVIEW
        assert snapshot.breakdown is None
        quote = snapshot.review_quote
        assert quote.shipping_level == "GROUND"
        assert quote.quantity == 1
        assert quote.breakdown.total_cost_usd == 18.0
        assert quote.remaining_balance(2000) == 200

    def test_review_uses_frozen_quote_for_cost(self, priced):
        priced.advance()

        cost = priced.apportioned_cost(1.27, ("GB",))

        assert cost.currency == "USD"
        assert cost.printing == pytest.approx(12.0)
        assert cost.shipping == pytest.approx(6.0)

    def test_quantity_locked_on_review(self, priced):
        priced.advance()

        with pytest.raises(WizardStateError):
            priced.set_quantity(2)

    def test_back_discards_quote(self, priced):
        priced.advance()

        snapshot = priced.back()

        assert snapshot.step is PrintOrderStep.SHIPPING_METHOD
        assert snapshot.review_quote is None
        assert snapshot.breakdown is None

    def test_cannot_advance_past_review(self, priced):
        priced.advance()

        with pytest.raises(WizardStateError):
            priced.advance()

    def test_checkout(self, fake_api, priced):
        fake_api.add("POST", "/api/print-orders/checkout", json_body={
            "success": True,
            "data": {"checkoutUrl": "https://checkout.example/po_1"},
        })
        priced.advance()

        assert priced.create_checkout() == "https://checkout.example/po_1"
        sent = fake_api.calls_to("POST", "/api/print-orders/checkout")[0]["json"]
        assert sent["shippingLevel"] == "GROUND"
        assert sent["bookId"] == "book-1"

    def test_checkout_without_url_fails(self, fake_api, priced):
        fake_api.add("POST", "/api/print-orders/checkout", json_body={"success": True, "data": {}})
        priced.advance()

        with pytest.raises(ApiError) as exc_info:
            priced.create_checkout()

        assert exc_info.value.message == "Failed to create checkout"

    def test_checkout_requires_review(self, priced):
        with pytest.raises(WizardStateError):
            priced.create_checkout()


class TestDisplayCurrency:
    """Test apportioned cost for GBP destinations."""

    def test_gb_destination_sees_gbp(self, fake_api, wizard):
        wizard.set_shipping_address(dict(ADDRESS, country_code="GB", state_code="", postcode="SW1A 1AA"))
        wizard.advance()
        fake_api.add("POST", "/api/print-orders/calculate-cost", json_body=cost_body(18.0))
        wizard.select_shipping_method("MAIL")

        cost = wizard.apportioned_cost(1.25, ("GB", "GG", "JE", "IM"))

        assert cost.currency == "GBP"
        assert cost.total == pytest.approx(18.0 * 0.8)
        assert cost.printing + cost.shipping == pytest.approx(cost.total)

    def test_no_quote_no_cost(self, wizard):
        assert wizard.apportioned_cost(1.27, ("GB",)) is None


class TestPrintOrderService:
    """Test the active wizard holder and order endpoints."""

    def test_start_replaces_wizard(self, api_client):
        service = PrintOrderService(api_client, max_quantity=5)
        first = service.start("b1")
        second = service.start("b2", quantity=2)

        assert service.wizard is second
        assert second is not first
        assert second.snapshot().quantity == 2

        service.discard()
        assert service.wizard is None

    def test_list_orders_passes_filters(self, fake_api, api_client):
        fake_api.add("GET", "/api/print-orders", json_body={"success": True, "data": {"orders": []}})
        service = PrintOrderService(api_client)

        service.list_orders(page=2, limit=5, status="shipped")

        assert fake_api.calls_to("GET", "/api/print-orders")[0]["params"] == {
            "page": "2",
            "limit": "5",
            "status": "shipped",
        }

    def test_order_endpoints(self, fake_api, api_client):
        fake_api.add("GET", "/api/print-orders/po1/status", json_body={"success": True, "data": {"status": "shipped"}})
        fake_api.add("DELETE", "/api/print-orders/po1", json_body={"success": True})
        service = PrintOrderService(api_client)

        assert service.get_order_status("po1")["data"]["status"] == "shipped"
        assert service.cancel_order("po1") == {"success": True}
        assert fake_api.calls_to("DELETE", "/api/print-orders/po1")
