"""
Shipping address validation for print orders.

Checks required fields, phone and email shape, the US state requirement and
postal codes for the countries the fulfillment partner ships to most.
Countries without a pattern accept any non-empty postal code.

Usage:
    errors = validate_shipping_address(address)
    if errors:
        raise ValidationError(400, "Invalid shipping address", field_errors=errors)
"""

from __future__ import annotations

import re
from typing import Dict, Tuple

from models.print_order import ShippingAddress


# Country code -> (pattern, example shown in the error message)
POSTAL_CODE_PATTERNS: Dict[str, Tuple[re.Pattern, str]] = {
    "US": (re.compile(r"^\d{5}(-\d{4})?$"), "12345 or 12345-6789"),
    "CA": (re.compile(r"^[A-Z]\d[A-Z] \d[A-Z]\d$", re.IGNORECASE), "K1A 0A6"),
    "GB": (re.compile(r"^[A-Z]{1,2}\d[A-Z\d]? \d[A-Z]{2}$", re.IGNORECASE), "SW1A 1AA"),
    "DE": (re.compile(r"^\d{5}$"), "10115"),
    "FR": (re.compile(r"^\d{5}$"), "75001"),
    "PL": (re.compile(r"^\d{2}-\d{3}$"), "00-001"),
    "AU": (re.compile(r"^\d{4}$"), "2000"),
    "JP": (re.compile(r"^\d{3}-\d{4}$"), "100-0001"),
}

PHONE_PATTERN = re.compile(r"^[+]?[\d\s\-.()]{8,20}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_postal_code(postcode: str, country_code: str) -> Tuple[bool, str]:
    """
    Check a postal code against the destination country's format.

    Returns:
        (is_valid, error message or "")
    """
    entry = POSTAL_CODE_PATTERNS.get((country_code or "").upper())
    if entry is None:
        return True, ""

    pattern, example = entry
    if pattern.match((postcode or "").strip()):
        return True, ""
    return False, f"Invalid postal code format for {country_code.upper()} (e.g. {example})"


def validate_shipping_address(address: ShippingAddress) -> Dict[str, str]:
    """
    Validate a shipping address.

    Returns:
        Field name -> error message; empty when the address is valid
    """
    errors: Dict[str, str] = {}

    if not address.name.strip():
        errors["name"] = "Name is required"

    if not address.street1.strip():
        errors["street1"] = "Street address is required"

    if not address.city.strip():
        errors["city"] = "City is required"

    if not address.postcode.strip():
        errors["postcode"] = "Postal code is required"
    else:
        valid, message = validate_postal_code(address.postcode, address.country_code)
        if not valid:
            errors["postcode"] = message

    if not address.country_code:
        errors["country_code"] = "Country is required"

    if not address.phone_number.strip():
        errors["phone_number"] = "Phone number is required"
    elif not PHONE_PATTERN.match(address.phone_number):
        errors["phone_number"] = "Invalid phone number"

    if not address.email.strip():
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.match(address.email):
        errors["email"] = "Invalid email address"

    if address.country_code == "US" and not address.state_code:
        errors["state_code"] = "State is required for US addresses"

    return errors
