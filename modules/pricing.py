"""
Credit pricing rules.

Credits cost a flat CREDIT_PRICE_USD each. The purchase dialog offers three
fixed packages, preceded by a package covering the exact shortfall when an
action needs more credits than the user holds.

Page regeneration is free up to a per-book limit that depends on the page
count; after that each regeneration spends REGENERATION_COST_CREDITS.
"""

from __future__ import annotations

from typing import Any, List

from config import Config
from core.exceptions import ValidationError
from models.credits import CreditPackage


# Fixed packages: (credits, popular)
SUGGESTED_PACKAGES = (
    (250, False),
    (500, True),
    (1000, False),
)

# Page count -> free regenerations per book
FREE_REGENERATION_LIMITS = {
    12: 3,
    16: 4,
    24: 5,
}

REGENERATION_COST_CREDITS = 16


def credits_to_usd(credits: int, price_per_credit: float = None) -> float:
    """USD price of ``credits`` credits."""
    if price_per_credit is None:
        price_per_credit = Config.CREDIT_PRICE_USD
    return credits * price_per_credit


def shortfall(required_credits: int, current_balance: int) -> int:
    """Credits missing to cover ``required_credits`` (never negative)."""
    return max(0, required_credits - current_balance)


def credit_packages(required_credits: int = 0, current_balance: int = 0) -> List[CreditPackage]:
    """
    Packages to offer in the purchase dialog.

    Args:
        required_credits: Credits the pending action needs (0 if none)
        current_balance: Balance the user sees right now

    Returns:
        Shortfall package first (when there is a shortfall), then the fixed
        packages
    """
    packages = [
        CreditPackage(credits=credits, price=credits_to_usd(credits), popular=popular)
        for credits, popular in SUGGESTED_PACKAGES
    ]

    missing = shortfall(required_credits, current_balance)
    if missing > 0:
        packages.insert(0, CreditPackage(
            credits=missing,
            price=credits_to_usd(missing),
            is_shortfall=True,
        ))

    return packages


def validate_custom_amount(value: Any, maximum: int = None) -> int:
    """
    Parse and check a custom credit amount.

    Raises:
        ValidationError: If the value is not a whole number in 1..maximum
    """
    if maximum is None:
        maximum = Config.MAX_CUSTOM_CREDIT_PURCHASE

    try:
        amount = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(
            message="Credit amount must be a whole number",
            field_errors={"creditAmount": "Credit amount must be a whole number"},
        )

    if amount <= 0 or amount > maximum:
        message = f"Credit amount must be between 1 and {maximum}"
        raise ValidationError(message=message, field_errors={"creditAmount": message})

    return amount


def remaining_free_regenerations(page_count: int, regenerations_used: int) -> int:
    """Free regenerations left for a book; unknown page counts get none."""
    free_limit = FREE_REGENERATION_LIMITS.get(page_count, 0)
    return max(0, free_limit - regenerations_used)


def regeneration_cost(page_count: int, regenerations_used: int) -> int:
    """Credits the next regeneration will spend (0 while still free)."""
    if remaining_free_regenerations(page_count, regenerations_used) > 0:
        return 0
    return REGENERATION_COST_CREDITS
