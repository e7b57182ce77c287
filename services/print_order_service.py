"""
Print order wizard and order management.

The wizard walks one book through three steps:

    SHIPPING_ADDRESS  -> address validated locally
    SHIPPING_METHOD   -> shipping options loaded, cost recalculated on every
                         method or quantity change
    REVIEW            -> quote frozen, checkout created from it

Cost results are applied only when they are still wanted:
    - each recalculation takes a ticket when it is sent
    - the result is applied only if the wizard is still on SHIPPING_METHOD
      and the ticket is the newest one issued
    - any step change invalidates all tickets in flight

Results that fail either check are logged and dropped.

Thread Safety:
    - Wizard state lives behind self._lock
    - API calls are made without holding the lock
    - snapshot() returns a frozen WizardSnapshot

Usage:
    wizard = print_order_service.start(book_id="b1")
    wizard.set_shipping_address(form_data)
    wizard.advance()                       # -> SHIPPING_METHOD
    wizard.load_shipping_options()         # auto-selects and prices a level
    wizard.select_shipping_method("GROUND")
    wizard.advance()                       # -> REVIEW, quote frozen
    checkout_url = wizard.create_checkout()
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Tuple

from core.api_client import StorybookAPIClient
from core.exceptions import ApiError, StorybookWebError, ValidationError, WizardStateError
from models.print_order import (
    CostApportionment,
    CostBreakdown,
    PrintOrderStep,
    ReviewQuote,
    ShippingAddress,
    ShippingOption,
    WizardSnapshot,
)
from modules.address_validation import validate_shipping_address
from modules.apportionment import apportion_breakdown, convert_for_display
from modules.sanitize import sanitize_text
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

# Offered when the shipping options endpoint does not answer successfully
DEFAULT_SHIPPING_OPTIONS: Tuple[ShippingOption, ...] = (
    ShippingOption(level="MAIL", name="Mail", description="Standard mail delivery"),
    ShippingOption(level="PRIORITY_MAIL", name="Priority Mail", description="Faster mail delivery"),
    ShippingOption(level="GROUND", name="Ground", description="Ground shipping"),
    ShippingOption(level="EXPEDITED", name="Expedited", description="Expedited shipping"),
    ShippingOption(level="EXPRESS", name="Express", description="Fastest delivery"),
)

# Address fields cleaned before use: field -> max length
ADDRESS_TEXT_LIMITS = {
    "name": 100,
    "street1": 200,
    "street2": 200,
    "city": 100,
    "state_code": 10,
    "postcode": 20,
    "country_code": 2,
    "phone_number": 30,
    "email": 254,
}


class PrintOrderWizard:
    """
    State of one print order being configured.

    Attributes:
        book_id: Book being printed
    """

    def __init__(
        self,
        api_client: StorybookAPIClient,
        book_id: str,
        quantity: int = 1,
        max_quantity: int = 100,
        shipping_address: Optional[ShippingAddress] = None,
    ):
        if not book_id:
            raise ValueError("book_id is required")

        self._api = api_client
        self.book_id = str(book_id)
        self._max_quantity = max_quantity
        self._lock = threading.Lock()

        self._step = PrintOrderStep.SHIPPING_ADDRESS
        self._quantity = self._check_quantity(quantity)
        self._address = shipping_address or ShippingAddress()
        self._shipping_level = ""
        self._options: Tuple[ShippingOption, ...] = ()
        self._options_from_api = False
        self._breakdown: Optional[CostBreakdown] = None
        self._review_quote: Optional[ReviewQuote] = None
        self._is_loading_options = False
        self._recalculations_in_flight = 0
        self._error: Optional[str] = None

        self._ticket_counter = 0
        self._newest_ticket = 0

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    def snapshot(self) -> WizardSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def apportioned_cost(
        self,
        gbp_to_usd_rate: float,
        gbp_countries,
    ) -> Optional[CostApportionment]:
        """
        Current quote split into printing and shipping, in the destination's
        display currency. Uses the frozen review quote once on REVIEW.
        """
        with self._lock:
            breakdown = self._review_quote.breakdown if self._review_quote else self._breakdown
            country_code = self._address.country_code

        if breakdown is None:
            return None

        return convert_for_display(
            apportion_breakdown(breakdown, "USD"),
            country_code,
            gbp_to_usd_rate,
            gbp_countries,
        )

    # =========================================================================
    # STEP NAVIGATION
    # =========================================================================

    def set_shipping_address(self, data: Dict[str, Any]) -> ShippingAddress:
        """
        Replace the shipping address (form data, not yet validated).

        Only allowed on the address step.
        """
        cleaned = {
            field: sanitize_text(data.get(field), limit)
            for field, limit in ADDRESS_TEXT_LIMITS.items()
            if data.get(field) is not None
        }
        address = ShippingAddress.from_dict(cleaned)

        with self._lock:
            if self._step is not PrintOrderStep.SHIPPING_ADDRESS:
                raise WizardStateError("Shipping address can only be changed on the address step", self._step.name)
            self._address = address
            self._error = None
        return address

    def advance(self) -> WizardSnapshot:
        """
        Move to the next step.

        SHIPPING_ADDRESS -> SHIPPING_METHOD requires a valid address.
        SHIPPING_METHOD -> REVIEW requires a priced shipping level; the
        current quote is frozen into a ReviewQuote.

        Raises:
            ValidationError: If the address is invalid
            WizardStateError: If the step cannot be left yet
        """
        with self._lock:
            if self._step is PrintOrderStep.SHIPPING_ADDRESS:
                errors = validate_shipping_address(self._address)
                if errors:
                    raise ValidationError(message="Invalid shipping address", field_errors=errors)
                self._change_step_locked(PrintOrderStep.SHIPPING_METHOD)

            elif self._step is PrintOrderStep.SHIPPING_METHOD:
                if not self._shipping_level or self._breakdown is None:
                    raise WizardStateError("Select a shipping method and wait for the price first", self._step.name)
                self._review_quote = ReviewQuote(
                    book_id=self.book_id,
                    quantity=self._quantity,
                    shipping_level=self._shipping_level,
                    shipping_address=self._address.to_dict(),
                    breakdown=self._breakdown,
                )
                self._change_step_locked(PrintOrderStep.REVIEW)

            else:
                raise WizardStateError("Already on the last step", self._step.name)

            logger.info(f"Print order for book {self.book_id} moved to {self._step.name}")

        return self.snapshot()

    def back(self) -> WizardSnapshot:
        """Return to the previous step; the frozen quote is discarded."""
        with self._lock:
            if self._step is PrintOrderStep.SHIPPING_ADDRESS:
                raise WizardStateError("Already on the first step", self._step.name)
            self._review_quote = None
            self._change_step_locked(PrintOrderStep(self._step.value - 1))
        return self.snapshot()

    def _change_step_locked(self, step: PrintOrderStep) -> None:
        # The live breakdown belongs to SHIPPING_METHOD only
        self._step = step
        self._breakdown = None
        self._newest_ticket = 0
        self._error = None

    # =========================================================================
    # SHIPPING METHOD
    # =========================================================================

    def load_shipping_options(self) -> WizardSnapshot:
        """
        Fetch shipping levels for the address, then price one of them.

        Falls back to the default levels if the endpoint fails or returns
        nothing. Keeps the previously chosen level when it is still offered,
        else picks the first one.
        """
        with self._lock:
            self._require_step_locked(PrintOrderStep.SHIPPING_METHOD)
            self._is_loading_options = True
            request_data = {
                "shippingAddress": self._address.to_dict(),
                "bookId": self.book_id,
                "quantity": self._quantity,
            }

        options: List[ShippingOption] = []
        try:
            body = self._api.get_shipping_options(request_data)
            data = body.get("data")
            if body.get("success") and isinstance(data, list):
                options = [ShippingOption.from_dict(item) for item in data if isinstance(item, dict)]
        except StorybookWebError as e:
            logger.warning(f"Shipping options unavailable, using defaults: {e.message}")

        with self._lock:
            self._is_loading_options = False
            if self._step is not PrintOrderStep.SHIPPING_METHOD:
                logger.info("Shipping options dropped: wizard left the method step")
                return self._snapshot_locked()

            self._options_from_api = bool(options)
            self._options = tuple(options) if options else DEFAULT_SHIPPING_OPTIONS
            offered = [option.level for option in self._options]
            level = self._shipping_level if self._shipping_level in offered else offered[0]

        try:
            self.select_shipping_method(level)
        except StorybookWebError as e:
            # Already recorded in the snapshot's error
            logger.warning(f"Initial cost calculation failed: {e.message}")
        return self.snapshot()

    def select_shipping_method(self, level: str) -> Optional[CostBreakdown]:
        """
        Choose a shipping level and price the order with it.

        Returns:
            The new breakdown, or None if the result arrived too late to apply

        Raises:
            WizardStateError: If not on the method step
            ValidationError: If the level is not one of the offered options
            StorybookWebError: If the cost calculation fails
        """
        with self._lock:
            self._require_step_locked(PrintOrderStep.SHIPPING_METHOD)
            if self._options and level not in {option.level for option in self._options}:
                message = f"Unknown shipping level: {level}"
                raise ValidationError(message=message, field_errors={"shippingLevel": message})
            self._shipping_level = level
        return self._recalculate()

    def set_quantity(self, quantity: Any) -> Optional[CostBreakdown]:
        """
        Change the number of copies; reprices when a level is selected.

        Raises:
            ValidationError: If quantity is outside 1..max_quantity
        """
        checked = self._check_quantity(quantity)
        with self._lock:
            if self._step is PrintOrderStep.REVIEW:
                raise WizardStateError("Quantity cannot change on the review step", self._step.name)
            self._quantity = checked
            should_recalculate = (
                self._step is PrintOrderStep.SHIPPING_METHOD and bool(self._shipping_level)
            )
        if should_recalculate:
            return self._recalculate()
        return None

    def _recalculate(self) -> Optional[CostBreakdown]:
        with self._lock:
            self._ticket_counter += 1
            ticket = self._ticket_counter
            self._newest_ticket = ticket
            self._recalculations_in_flight += 1
            level = self._shipping_level
            order = {
                "bookId": self.book_id,
                "quantity": self._quantity,
                "shippingAddress": self._address.to_dict(),
                "shippingLevel": level,
            }

        try:
            body = self._api.calculate_cost(order)
            if not body.get("success"):
                raise ApiError(200, body.get("message") or "Cost calculation failed", body.get("code"), body)
        except StorybookWebError as e:
            with self._lock:
                self._recalculations_in_flight -= 1
                if self._is_current_locked(ticket):
                    self._error = e.message
            raise

        with self._lock:
            self._recalculations_in_flight -= 1
            if not self._is_current_locked(ticket):
                logger.info(f"Discarding stale cost result (ticket {ticket}, level {level})")
                return None
            self._breakdown = CostBreakdown.from_dict(body.get("data"), level)
            self._error = None
            logger.debug(
                f"Cost for book {self.book_id}: ${self._breakdown.total_cost_usd} "
                f"({self._breakdown.total_cost_credits} credits)"
            )
            return self._breakdown

    def _is_current_locked(self, ticket: int) -> bool:
        return self._step is PrintOrderStep.SHIPPING_METHOD and ticket == self._newest_ticket

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def create_checkout(self) -> str:
        """
        Create the payment checkout for the reviewed order.

        Returns:
            Checkout URL to redirect to

        Raises:
            WizardStateError: If not on the review step
            StorybookWebError: If the API call fails
        """
        with self._lock:
            self._require_step_locked(PrintOrderStep.REVIEW)
            quote = self._review_quote

        body = self._api.create_print_order_checkout({
            "bookId": quote.book_id,
            "quantity": quote.quantity,
            "shippingAddress": quote.shipping_address,
            "shippingLevel": quote.shipping_level,
        })
        data = body.get("data") or {}
        checkout_url = (data.get("checkoutUrl") or data.get("url")) if isinstance(data, dict) else None
        if not body.get("success") or not checkout_url:
            raise ApiError(200, body.get("message") or "Failed to create checkout", body.get("code"), body)

        logger.info(f"Checkout created for print order of book {self.book_id}")
        return checkout_url

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _snapshot_locked(self) -> WizardSnapshot:
        return WizardSnapshot(
            book_id=self.book_id,
            step=self._step,
            quantity=self._quantity,
            shipping_address=self._address.to_dict(),
            shipping_level=self._shipping_level,
            shipping_options=self._options,
            options_from_api=self._options_from_api,
            breakdown=self._breakdown,
            review_quote=self._review_quote,
            is_loading_options=self._is_loading_options,
            is_recalculating=self._recalculations_in_flight > 0,
            error=self._error,
        )

    def _require_step_locked(self, step: PrintOrderStep) -> None:
        if self._step is not step:
            raise WizardStateError(
                f"Operation requires step {step.name}, wizard is on {self._step.name}", self._step.name
            )

    def _check_quantity(self, quantity: Any) -> int:
        try:
            value = int(quantity)
        except (TypeError, ValueError):
            value = 0
        if value < 1 or value > self._max_quantity:
            message = f"Quantity must be between 1 and {self._max_quantity}"
            raise ValidationError(message=message, field_errors={"quantity": message})
        return value


class PrintOrderService:
    """
    Holds the active print order wizard and wraps the order endpoints.

    One wizard is active at a time (one client session per process).
    """

    def __init__(self, api_client: StorybookAPIClient, max_quantity: int = 100):
        self._api = api_client
        self._max_quantity = max_quantity
        self._lock = threading.Lock()
        self._wizard: Optional[PrintOrderWizard] = None

        logger.info("PrintOrderService initialized")

    def start(self, book_id: str, quantity: int = 1) -> PrintOrderWizard:
        """Begin a new print order, replacing any unfinished one."""
        wizard = PrintOrderWizard(self._api, book_id, quantity=quantity, max_quantity=self._max_quantity)
        with self._lock:
            if self._wizard is not None:
                logger.info(f"Abandoning unfinished print order for book {self._wizard.book_id}")
            self._wizard = wizard
        logger.info(f"Print order started for book {book_id}")
        return wizard

    @property
    def wizard(self) -> Optional[PrintOrderWizard]:
        with self._lock:
            return self._wizard

    def discard(self) -> None:
        with self._lock:
            self._wizard = None

    def list_orders(self, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return self._api.list_print_orders(params)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._api.get_print_order(order_id)

    def cancel_order(self, order_id: str) -> Dict[str, Any]:
        logger.info(f"Cancelling print order {order_id}")
        return self._api.cancel_print_order(order_id)

    def get_order_status(self, order_id: str) -> Dict[str, Any]:
        return self._api.get_print_order_status(order_id)
