"""
Print order data models.

These models represent a physical print order as it flows through the
wizard: shipping address -> shipping method (live cost) -> review.

Thread Safety:
    - CostBreakdown, CostApportionment, ReviewQuote and WizardSnapshot are
      frozen; the wizard swaps whole objects instead of mutating them
    - ShippingAddress is mutable for form handling, the wizard keeps a copy
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, Optional, Tuple


def _money(value: Any) -> float:
    """
    Parse a money value from the fulfillment API.

    Amounts arrive as numbers or numeric strings; anything missing or
    unparseable counts as 0, and so does NaN or infinity.
    """
    if value is None or value == "":
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount):
        return 0.0
    return amount


class PrintOrderStep(Enum):
    """
    Wizard steps.

    Lifecycle:
        SHIPPING_ADDRESS -> SHIPPING_METHOD -> REVIEW
    """

    SHIPPING_ADDRESS = 0
    SHIPPING_METHOD = 1
    REVIEW = 2


@dataclass
class ShippingAddress:
    """Destination for a print order (field names follow the fulfillment API)."""

    name: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state_code: str = ""
    postcode: str = ""
    country_code: str = "US"
    phone_number: str = ""
    email: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingAddress":
        return cls(
            name=data.get("name", "") or "",
            street1=data.get("street1", "") or "",
            street2=data.get("street2", "") or "",
            city=data.get("city", "") or "",
            state_code=(data.get("state_code", "") or "").upper(),
            postcode=data.get("postcode", "") or "",
            country_code=(data.get("country_code", "US") or "").upper(),
            phone_number=data.get("phone_number", "") or "",
            email=data.get("email", "") or "",
        )


@dataclass(frozen=True)
class ShippingOption:
    """A shipping level offered for the destination."""

    level: str
    name: str = ""
    description: str = ""
    estimated_days: str = ""
    cost: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingOption":
        cost = data.get("cost", data.get("total_cost_incl_tax"))
        return cls(
            level=str(data.get("level", "")),
            name=data.get("name", "") or "",
            description=data.get("description", "") or "",
            estimated_days=str(data.get("estimatedDays", data.get("estimated_days", "")) or ""),
            cost=_money(cost) if cost is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "name": self.name,
            "description": self.description,
            "estimatedDays": self.estimated_days,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class CostBreakdown:
    """
    Cost quote for a print order.

    The itemized fields are a cost model used only to derive a display ratio.
    The charged amount is always the blended total (``total_cost_usd`` /
    ``total_cost_gbp``), which may differ from the itemized sum because of
    rounding, currency conversion or promotions.
    """

    line_items_cost: float = 0.0
    """Sum of line_items[].total_cost_incl_tax."""

    fulfillment_cost: float = 0.0
    shipping_cost: float = 0.0
    total_cost_usd: float = 0.0
    total_cost_gbp: float = 0.0
    total_cost_credits: int = 0
    shipping_level: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], shipping_level: str = "") -> "CostBreakdown":
        """Create from the calculate-cost response body's ``data``."""
        data = data or {}
        breakdown = data.get("cost_breakdown") or {}
        line_items = breakdown.get("line_items") or []
        line_items_cost = sum(
            _money(item.get("total_cost_incl_tax"))
            for item in line_items
            if isinstance(item, dict)
        )
        return cls(
            line_items_cost=line_items_cost,
            fulfillment_cost=_money((breakdown.get("fulfillment") or {}).get("total_cost_incl_tax")),
            shipping_cost=_money((breakdown.get("shipping") or {}).get("total_cost_incl_tax")),
            total_cost_usd=_money(data.get("total_cost_usd")),
            total_cost_gbp=_money(data.get("total_cost_gbp")),
            total_cost_credits=int(_money(data.get("total_cost_credits"))),
            shipping_level=shipping_level or data.get("shipping_level", "") or "",
            raw=dict(data),
        )

    def blended_total(self, currency: str = "USD") -> float:
        """Authoritative charge in ``currency`` ("USD" or "GBP")."""
        if currency.upper() == "GBP":
            return self.total_cost_gbp
        return self.total_cost_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineItemsCost": self.line_items_cost,
            "fulfillmentCost": self.fulfillment_cost,
            "shippingCost": self.shipping_cost,
            "totalCostUsd": self.total_cost_usd,
            "totalCostGbp": self.total_cost_gbp,
            "totalCostCredits": self.total_cost_credits,
            "shippingLevel": self.shipping_level,
        }


@dataclass(frozen=True)
class CostApportionment:
    """
    Blended total split into display buckets.

    Values are unrounded; round only when formatting for display.
    """

    printing: float
    shipping: float
    printing_ratio: float
    shipping_ratio: float
    total: float
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "printing": self.printing,
            "shipping": self.shipping,
            "printingRatio": self.printing_ratio,
            "shippingRatio": self.shipping_ratio,
            "total": self.total,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class ReviewQuote:
    """
    Quote frozen when the wizard moves on to review.

    The live breakdown belongs to the shipping-method step; review and
    checkout only ever read this snapshot.
    """

    book_id: str
    quantity: int
    shipping_level: str
    shipping_address: Dict[str, Any]
    breakdown: CostBreakdown

    def remaining_balance(self, balance: int) -> int:
        """Credits left after paying for this order."""
        return balance - self.breakdown.total_cost_credits

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookId": self.book_id,
            "quantity": self.quantity,
            "shippingLevel": self.shipping_level,
            "shippingAddress": dict(self.shipping_address),
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class WizardSnapshot:
    """Immutable view of the print-order wizard."""

    book_id: str
    step: PrintOrderStep
    quantity: int
    shipping_address: Dict[str, Any]
    shipping_level: str
    shipping_options: Tuple[ShippingOption, ...] = ()
    options_from_api: bool = False
    breakdown: Optional[CostBreakdown] = None
    review_quote: Optional[ReviewQuote] = None
    is_loading_options: bool = False
    is_recalculating: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookId": self.book_id,
            "step": self.step.name.lower(),
            "quantity": self.quantity,
            "shippingAddress": dict(self.shipping_address),
            "shippingLevel": self.shipping_level,
            "shippingOptions": [o.to_dict() for o in self.shipping_options],
            "optionsFromApi": self.options_from_api,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "reviewQuote": self.review_quote.to_dict() if self.review_quote else None,
            "isLoadingOptions": self.is_loading_options,
            "isRecalculating": self.is_recalculating,
            "error": self.error,
        }
