"""
Credit balance service.

The balance is held ONCE, in CreditLedger. The session's
``user.credits_balance`` is read from the ledger whenever a session snapshot
is built, so the two views cannot disagree.

Three pieces:

    CreditLedger             - lock-guarded owner of the balance, the history
                               page, the purchase session and the flags
    CreditBalanceReconciler  - applies server balances and local deltas and
                               tells the session to re-persist afterwards
    CreditService            - the credit operations (purchase, verify,
                               refresh balance, history, spend)

Ordering:
    Every request that may write the balance takes a ticket from
    next_ticket() when it is SENT. A server balance carrying a ticket that is
    not newer than the last one applied is discarded, so responses are
    applied in the order the requests were made, not the order they
    completed. reset() marks every ticket issued so far as applied.

Local deltas:
    apply_local_delta() adjusts the visible balance optimistically (e.g. after
    a paid regeneration). Deltas are never written to the credential cache
    and are dropped by the next server balance.

Usage:
    ledger = CreditLedger()
    reconciler = CreditBalanceReconciler(ledger, on_server_balance=session.persist_current_user)
    credit_service = CreditService(api_client, ledger, reconciler)

    credit_service.fetch_balance()
    snapshot = credit_service.snapshot()
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from core.api_client import StorybookAPIClient
from core.exceptions import ApiError, StorybookWebError
from models.credits import (
    CreditPackage,
    CreditTransaction,
    CreditsSnapshot,
    Pagination,
    PurchaseSession,
    transactions_from,
)
from modules import pricing
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class CreditLedger:
    """
    Single owner of the credit balance and the credits view state.

    Thread Safety:
        - All reads and writes hold self._lock
        - snapshot() returns a frozen CreditsSnapshot
    """

    # Names accepted by set_flag()
    FLAGS = (
        "is_creating_session",
        "is_verifying_purchase",
        "is_fetching_history",
        "is_fetching_balance",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._ticket_counter = 0
        self._last_applied_ticket = 0
        self._server_balance = 0
        self._pending_delta = 0
        self._transactions: List[CreditTransaction] = []
        self._pagination = Pagination()
        self._purchase_session: Optional[PurchaseSession] = None
        self._flags: Dict[str, bool] = {name: False for name in self.FLAGS}
        self._error: Optional[str] = None

    # =========================================================================
    # BALANCE
    # =========================================================================

    @property
    def balance(self) -> int:
        """Balance the user sees (server balance plus local deltas)."""
        with self._lock:
            return self._server_balance + self._pending_delta

    @property
    def server_balance(self) -> int:
        """Last authoritative balance."""
        with self._lock:
            return self._server_balance

    def next_ticket(self) -> int:
        """Issue the sequence number for a request being sent now."""
        with self._lock:
            self._ticket_counter += 1
            return self._ticket_counter

    def apply_server_balance(self, new_balance: int, ticket: Optional[int] = None) -> bool:
        """
        Overwrite the balance with a server-reported value.

        Pending local deltas are dropped.

        Args:
            new_balance: Balance reported by the server
            ticket: Ticket taken when the request was sent; None for values
                that are not tied to a request (cache hydration)

        Returns:
            False if the value was discarded as stale
        """
        with self._lock:
            if ticket is not None:
                if ticket <= self._last_applied_ticket:
                    logger.info(
                        f"Discarding stale balance {new_balance} "
                        f"(ticket {ticket} <= {self._last_applied_ticket})"
                    )
                    return False
                self._last_applied_ticket = ticket

            self._server_balance = int(new_balance)
            self._pending_delta = 0
            logger.debug(f"Server balance applied: {self._server_balance}")
            return True

    def apply_local_delta(self, delta: int) -> int:
        """
        Adjust the visible balance until the next server balance arrives.

        Returns:
            The new visible balance
        """
        with self._lock:
            self._pending_delta += int(delta)
            return self._server_balance + self._pending_delta

    # =========================================================================
    # VIEW STATE
    # =========================================================================

    def set_flag(self, name: str, value: bool) -> None:
        if name not in self._flags:
            raise ValueError(f"Unknown credit flag: {name}")
        with self._lock:
            self._flags[name] = value

    def set_error(self, error: Optional[str]) -> None:
        with self._lock:
            self._error = error

    def set_history(self, transactions: List[CreditTransaction], pagination: Pagination) -> None:
        with self._lock:
            self._transactions = list(transactions)
            self._pagination = pagination

    def prepend_transaction(self, transaction: CreditTransaction) -> None:
        """Put a new transaction at the top of the history (no duplicates)."""
        with self._lock:
            self._transactions = [t for t in self._transactions if not (transaction.id and t.id == transaction.id)]
            self._transactions.insert(0, transaction)

    def set_purchase_session(self, purchase_session: Optional[PurchaseSession]) -> None:
        with self._lock:
            self._purchase_session = purchase_session

    def reset(self) -> None:
        """
        Back to the signed-out state.

        The ticket counter keeps counting so responses to requests sent
        before the reset still compare correctly.
        """
        with self._lock:
            self._last_applied_ticket = self._ticket_counter
            self._server_balance = 0
            self._pending_delta = 0
            self._transactions = []
            self._pagination = Pagination()
            self._purchase_session = None
            self._flags = {name: False for name in self.FLAGS}
            self._error = None
        logger.debug("Credit ledger reset")

    def snapshot(self) -> CreditsSnapshot:
        with self._lock:
            return CreditsSnapshot(
                balance=self._server_balance + self._pending_delta,
                server_balance=self._server_balance,
                pending_delta=self._pending_delta,
                transactions=tuple(self._transactions),
                pagination=self._pagination,
                purchase_session=self._purchase_session,
                error=self._error,
                **self._flags,
            )


class CreditBalanceReconciler:
    """
    Applies balance changes to the ledger and keeps the session cache in step.

    After a server balance is applied, ``on_server_balance`` is called
    (outside the ledger lock) so the session can re-persist the user with the
    new balance. Local deltas do not trigger it.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        on_server_balance: Optional[Callable[[], None]] = None,
    ):
        self._ledger = ledger
        self._on_server_balance = on_server_balance

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    def set_listener(self, on_server_balance: Optional[Callable[[], None]]) -> None:
        """Install the post-apply callback (wired once at startup)."""
        self._on_server_balance = on_server_balance

    def next_ticket(self) -> int:
        return self._ledger.next_ticket()

    def apply_server_balance(self, new_balance: int, ticket: Optional[int] = None) -> bool:
        """Apply a server balance; returns False if it was stale."""
        applied = self._ledger.apply_server_balance(new_balance, ticket)
        if applied and self._on_server_balance is not None:
            self._on_server_balance()
        return applied

    def apply_local_delta(self, delta: int) -> int:
        return self._ledger.apply_local_delta(delta)


class CreditService:
    """
    Credit operations against the API.

    Every operation sets its in-flight flag for the duration of the call and
    records the failure message on the ledger before re-raising.
    """

    def __init__(
        self,
        api_client: StorybookAPIClient,
        ledger: CreditLedger,
        reconciler: CreditBalanceReconciler,
        history_page_size: int = 20,
    ):
        self._api = api_client
        self._ledger = ledger
        self._reconciler = reconciler
        self._history_page_size = history_page_size

        logger.info("CreditService initialized")

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    def snapshot(self) -> CreditsSnapshot:
        return self._ledger.snapshot()

    # =========================================================================
    # PURCHASE
    # =========================================================================

    def create_purchase_session(self, credit_amount: Any, context: str = "pricing") -> PurchaseSession:
        """
        Start a checkout for ``credit_amount`` credits.

        Args:
            credit_amount: Number of credits (validated against the custom
                amount limits)
            context: Where the purchase was started (returned to after checkout)

        Returns:
            PurchaseSession with the checkout URL to redirect to

        Raises:
            ValidationError: If the amount is out of range
            StorybookWebError: If the API call fails
        """
        amount = pricing.validate_custom_amount(credit_amount)

        body = self._call(
            "is_creating_session",
            lambda: self._api.create_purchase_session(amount, context),
        )
        data = self._data(body, "Failed to create purchase session")
        purchase_session = PurchaseSession.from_dict(data, credit_amount=amount)
        if not purchase_session.checkout_url:
            raise ApiError(200, "Checkout URL missing from response", "INVALID_RESPONSE", body)

        self._ledger.set_purchase_session(purchase_session)
        logger.info(f"Purchase session created for {amount} credits")
        return purchase_session

    def verify_purchase(self, session_id: str) -> CreditsSnapshot:
        """
        Confirm a completed checkout and apply the new balance.

        A response older than a balance already applied does not overwrite
        it; the transaction is still recorded.

        Raises:
            StorybookWebError: If the API call fails
        """
        if not session_id:
            raise ValueError("session_id is required")

        ticket = self._reconciler.next_ticket()
        body = self._call("is_verifying_purchase", lambda: self._api.verify_purchase(session_id))
        data = self._data(body, "Failed to verify purchase")

        if "newBalance" in data:
            self._reconciler.apply_server_balance(self._balance(data["newBalance"], body), ticket)
        if isinstance(data.get("transaction"), dict):
            self._ledger.prepend_transaction(CreditTransaction.from_dict(data["transaction"]))
        self._ledger.set_purchase_session(None)

        logger.info(f"Purchase verified, balance now {self._ledger.balance}")
        return self._ledger.snapshot()

    def clear_purchase_session(self) -> None:
        self._ledger.set_purchase_session(None)

    # =========================================================================
    # BALANCE AND HISTORY
    # =========================================================================

    def fetch_balance(self) -> int:
        """
        Refresh the balance from the server.

        Returns:
            The visible balance after the refresh
        """
        ticket = self._reconciler.next_ticket()
        body = self._call("is_fetching_balance", self._api.get_credit_balance)
        data = self._data(body, "Failed to fetch credit balance")
        self._reconciler.apply_server_balance(self._balance(data.get("balance", 0) or 0, body), ticket)
        return self._ledger.balance

    def fetch_history(self, page: int = 1, limit: Optional[int] = None) -> CreditsSnapshot:
        """Load one page of the credit history."""
        limit = limit or self._history_page_size
        body = self._call("is_fetching_history", lambda: self._api.get_credit_history(page, limit))
        data = self._data(body, "Failed to fetch credit history")
        self._ledger.set_history(
            list(transactions_from(data.get("transactions"))),
            Pagination.from_dict(data.get("pagination")),
        )
        return self._ledger.snapshot()

    def spend_credits(self, amount: int) -> int:
        """
        Optimistically deduct credits the server has just charged.

        Returns:
            The new visible balance
        """
        if amount < 0:
            raise ValueError("amount must not be negative")
        return self._reconciler.apply_local_delta(-amount)

    def credit_packages(self, required_credits: int = 0) -> List[CreditPackage]:
        """Purchase packages for the current balance."""
        return pricing.credit_packages(required_credits, self._ledger.balance)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    def clear_error(self) -> None:
        self._ledger.set_error(None)

    def reset(self) -> None:
        self._ledger.reset()

    def _call(self, flag: str, call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Run an API call with ``flag`` set; record the error on failure."""
        self._ledger.set_flag(flag, True)
        self._ledger.set_error(None)
        try:
            return call()
        except StorybookWebError as e:
            logger.warning(f"Credit operation failed ({flag}): {e.message}")
            self._ledger.set_error(e.message)
            raise
        finally:
            self._ledger.set_flag(flag, False)

    def _data(self, body: Dict[str, Any], failure_message: str) -> Dict[str, Any]:
        """Return ``body['data']``; a body with success false is an error."""
        if body.get("success") is False:
            error = ApiError(200, body.get("message") or failure_message, body.get("code"), body)
            self._ledger.set_error(error.message)
            raise error
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    def _balance(self, value: Any, body: Dict[str, Any]) -> int:
        """Parse a balance from the response; junk is an invalid response."""
        try:
            return int(value)
        except (TypeError, ValueError):
            error = ApiError(200, "Invalid balance in server response", "INVALID_RESPONSE", body)
            self._ledger.set_error(error.message)
            raise error
