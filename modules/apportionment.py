"""Split of a blended print-order total into printing and shipping buckets.

The fulfillment API itemizes its base costs (line items, fulfillment,
shipping) but charges a single blended total that may differ from their sum.
The functions here use the itemized costs only as a ratio and redistribute
the blended total with it.

All values stay unrounded; format_price() is the only place that rounds.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from models.print_order import CostApportionment, CostBreakdown


# Destinations shown in GBP unless the caller passes its own list
DEFAULT_GBP_COUNTRIES = ("GB", "GG", "JE", "IM")

# USD value of one GBP
DEFAULT_GBP_TO_USD_RATE = 1.27

CURRENCY_SYMBOLS = {
    "USD": "$",
    "GBP": "£",
}


def apportion_print_cost(
    base_line_items_cost: float,
    base_fulfillment_cost: float,
    base_shipping_cost: float,
    final_blended_total: float,
    currency: str = "USD",
) -> CostApportionment:
    """
    Split ``final_blended_total`` by the itemized printing/shipping ratio.

    Printing is line items plus fulfillment. When the itemized base total is
    zero (no quote yet) both ratios and both buckets are zero.

    Args:
        base_line_items_cost: Sum of line item costs (incl. tax)
        base_fulfillment_cost: Fulfillment cost (incl. tax)
        base_shipping_cost: Shipping cost (incl. tax)
        final_blended_total: Amount actually charged
        currency: Currency code of ``final_blended_total``

    Returns:
        CostApportionment whose buckets sum to the blended total whenever the
        base total is positive
    """
    base_printing = base_line_items_cost + base_fulfillment_cost
    total_base = base_printing + base_shipping_cost

    if total_base > 0:
        printing_ratio = base_printing / total_base
        shipping_ratio = base_shipping_cost / total_base
    else:
        printing_ratio = 0.0
        shipping_ratio = 0.0

    return CostApportionment(
        printing=final_blended_total * printing_ratio,
        shipping=final_blended_total * shipping_ratio,
        printing_ratio=printing_ratio,
        shipping_ratio=shipping_ratio,
        total=final_blended_total,
        currency=currency,
    )


def apportion_breakdown(breakdown: CostBreakdown, currency: str = "USD") -> CostApportionment:
    """Apportion a parsed quote's blended total in ``currency``."""
    return apportion_print_cost(
        breakdown.line_items_cost,
        breakdown.fulfillment_cost,
        breakdown.shipping_cost,
        breakdown.blended_total(currency),
        currency=currency.upper(),
    )


def display_currency_for(
    country_code: str,
    gbp_to_usd_rate: float = DEFAULT_GBP_TO_USD_RATE,
    gbp_countries: Iterable[str] = DEFAULT_GBP_COUNTRIES,
) -> Tuple[str, float]:
    """
    Pick the display currency for a shipping destination.

    Quotes are apportioned in USD; the multiplier converts USD to the
    display currency.

    Returns:
        (currency code, multiplier applied to USD amounts)
    """
    if (country_code or "").upper() in {c.upper() for c in gbp_countries}:
        if gbp_to_usd_rate <= 0:
            raise ValueError(f"Invalid GBP to USD rate: {gbp_to_usd_rate}")
        return "GBP", 1.0 / gbp_to_usd_rate
    return "USD", 1.0


def convert_for_display(
    apportionment: CostApportionment,
    country_code: str,
    gbp_to_usd_rate: float = DEFAULT_GBP_TO_USD_RATE,
    gbp_countries: Iterable[str] = DEFAULT_GBP_COUNTRIES,
) -> CostApportionment:
    """
    Convert a USD apportionment into the destination's display currency.

    The same multiplier is applied to both buckets and the total, so the
    ratios are unchanged.
    """
    if apportionment.currency != "USD":
        raise ValueError(f"Expected a USD apportionment, got {apportionment.currency}")

    currency, multiplier = display_currency_for(country_code, gbp_to_usd_rate, gbp_countries)
    if currency == "USD":
        return apportionment

    return CostApportionment(
        printing=apportionment.printing * multiplier,
        shipping=apportionment.shipping * multiplier,
        printing_ratio=apportionment.printing_ratio,
        shipping_ratio=apportionment.shipping_ratio,
        total=apportionment.total * multiplier,
        currency=currency,
    )


def format_price(amount: float, currency: str = "USD") -> str:
    """Render an amount with 2 decimals, e.g. ``$12.50``."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), "")
    text = f"{symbol}{(amount or 0):.2f}"
    return text if symbol else f"{text} {currency.upper()}"
