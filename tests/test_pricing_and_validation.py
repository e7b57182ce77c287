"""
Tests for credit pricing rules and shipping address validation.
"""

import pytest

from core.exceptions import ValidationError
from models.print_order import ShippingAddress
from modules import pricing
from modules.address_validation import validate_postal_code, validate_shipping_address


# Fixtures

@pytest.fixture
def us_address():
    return ShippingAddress(
        name="Ada Lovelace",
        street1="1 Main St",
        city="Springfield",
        state_code="IL",
        postcode="62701",
        country_code="US",
        phone_number="+1 555 123 4567",
        email="ada@example.com",
    )


class TestCreditPackages:
    """Test purchase package suggestions."""

    def test_fixed_packages(self):
        packages = pricing.credit_packages()

        assert [(p.credits, p.popular) for p in packages] == [(250, False), (500, True), (1000, False)]
        assert [p.price for p in packages] == pytest.approx([2.5, 5.0, 10.0])

    def test_shortfall_package_comes_first(self):
        packages = pricing.credit_packages(required_credits=300, current_balance=120)

        assert packages[0].is_shortfall is True
        assert packages[0].credits == 180
        assert packages[0].price == pytest.approx(1.8)
        assert len(packages) == 4

    def test_no_shortfall_when_balance_covers(self):
        packages = pricing.credit_packages(required_credits=100, current_balance=100)

        assert not any(p.is_shortfall for p in packages)


class TestCustomAmount:
    """Test custom credit amount validation."""

    @pytest.mark.parametrize("value, expected", [(1, 1), ("250", 250), (" 100000 ", 100000)])
    def test_valid(self, value, expected):
        assert pricing.validate_custom_amount(value) == expected

    @pytest.mark.parametrize("value", [0, -1, 100001, "12.5", "", None, "ten"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc_info:
            pricing.validate_custom_amount(value)

        assert "creditAmount" in exc_info.value.field_errors


class TestRegenerations:
    """Test free regeneration limits."""

    @pytest.mark.parametrize("page_count, used, remaining", [
        (12, 0, 3),
        (16, 1, 3),
        (24, 5, 0),
        (24, 9, 0),
        (20, 0, 0),
    ])
    def test_remaining(self, page_count, used, remaining):
        assert pricing.remaining_free_regenerations(page_count, used) == remaining

    def test_cost_after_free_regenerations(self):
        assert pricing.regeneration_cost(12, 2) == 0
        assert pricing.regeneration_cost(12, 3) == pricing.REGENERATION_COST_CREDITS == 16


class TestPostalCodes:
    """Test per-country postal code formats."""

    @pytest.mark.parametrize("postcode, country", [
        ("12345", "US"),
        ("12345-6789", "US"),
        ("K1A 0A6", "CA"),
        ("SW1A 1AA", "GB"),
        ("m1 1ae", "GB"),
        ("10115", "DE"),
        ("75001", "FR"),
        ("00-950", "PL"),
        ("2000", "AU"),
        ("100-0001", "JP"),
        ("anything", "BR"),
    ])
    def test_valid(self, postcode, country):
        assert validate_postal_code(postcode, country) == (True, "")

    @pytest.mark.parametrize("postcode, country", [
        ("1234", "US"),
        ("K1A0A6", "CA"),
        ("SW1A1AA", "GB"),
        ("1011", "DE"),
        ("00950", "PL"),
        ("20000", "AU"),
        ("1000001", "JP"),
    ])
    def test_invalid(self, postcode, country):
        valid, message = validate_postal_code(postcode, country)

        assert valid is False
        assert country in message


class TestShippingAddress:
    """Test whole-address validation."""

    def test_valid_address(self, us_address):
        assert validate_shipping_address(us_address) == {}

    def test_required_fields(self):
        errors = validate_shipping_address(ShippingAddress(country_code="US"))

        assert set(errors) == {"name", "street1", "city", "postcode", "phone_number", "email", "state_code"}

    def test_us_requires_state(self, us_address):
        us_address.state_code = ""

        assert set(validate_shipping_address(us_address)) == {"state_code"}

    def test_state_not_required_outside_us(self, us_address):
        us_address.country_code = "DE"
        us_address.state_code = ""
        us_address.postcode = "10115"

        assert validate_shipping_address(us_address) == {}

    def test_missing_country(self, us_address):
        us_address.country_code = ""

        assert "country_code" in validate_shipping_address(us_address)

    @pytest.mark.parametrize("phone", ["123", "call me maybe", "+1 (555) 123-4567 ext 99999"])
    def test_invalid_phone(self, us_address, phone):
        us_address.phone_number = phone

        assert "phone_number" in validate_shipping_address(us_address)

    def test_invalid_email(self, us_address):
        us_address.email = "not-an-email"

        assert validate_shipping_address(us_address) == {"email": "Invalid email address"}
