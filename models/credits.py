"""
Credit data models.

Credits are spent on book generation and print orders and bought through an
external checkout. The balance itself lives in services.credit_service's
CreditLedger; these are the records it stores and hands out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple


class TransactionType(Enum):
    """Kind of credit movement."""

    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"

    @classmethod
    def parse(cls, value: str) -> "TransactionType":
        """Parse a server type tag; unknown tags count as usage."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.USAGE


@dataclass(frozen=True)
class CreditTransaction:
    """A single entry of the credit history."""

    id: str
    amount: int
    """Signed amount: positive for purchases and refunds, negative for usage."""

    type: TransactionType
    description: str = ""
    book_id: Optional[str] = None
    created_at: str = ""
    """ISO timestamp as sent by the server."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreditTransaction":
        book = data.get("bookId", data.get("book_id"))
        if isinstance(book, dict):
            book = book.get("id") or book.get("_id")
        return cls(
            id=str(data.get("id", data.get("_id", ""))),
            amount=int(data.get("amount", 0) or 0),
            type=TransactionType.parse(data.get("type", "")),
            description=data.get("description", "") or "",
            book_id=str(book) if book else None,
            created_at=data.get("createdAt", data.get("created_at", "")) or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "type": self.type.value,
            "description": self.description,
            "bookId": self.book_id,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Pagination:
    """Cursor state of the credit history."""

    current_page: int = 1
    total_pages: int = 1
    total_transactions: int = 0
    has_next_page: bool = False
    has_prev_page: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Pagination":
        data = data or {}
        return cls(
            current_page=int(data.get("currentPage", 1)),
            total_pages=int(data.get("totalPages", 1)),
            total_transactions=int(data.get("totalTransactions", 0)),
            has_next_page=bool(data.get("hasNextPage", False)),
            has_prev_page=bool(data.get("hasPrevPage", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "totalTransactions": self.total_transactions,
            "hasNextPage": self.has_next_page,
            "hasPrevPage": self.has_prev_page,
        }


@dataclass(frozen=True)
class PurchaseSession:
    """Checkout session created for a credit purchase."""

    session_id: str
    checkout_url: str
    credit_amount: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], credit_amount: int = 0) -> "PurchaseSession":
        return cls(
            session_id=data.get("sessionId", data.get("session_id", "")) or "",
            checkout_url=data.get("url", data.get("checkoutUrl", "")) or "",
            credit_amount=int(data.get("creditAmount", credit_amount) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "checkoutUrl": self.checkout_url,
            "creditAmount": self.credit_amount,
        }


@dataclass(frozen=True)
class CreditPackage:
    """A purchasable bundle of credits."""

    credits: int
    price: float
    popular: bool = False
    is_shortfall: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credits": self.credits,
            "price": self.price,
            "popular": self.popular,
            "isShortfall": self.is_shortfall,
        }


@dataclass(frozen=True)
class CreditsSnapshot:
    """
    Immutable view of the credit ledger.

    ``balance`` is what the user should see (server balance plus optimistic
    local deltas). ``server_balance`` is the last authoritative value.
    """

    balance: int
    server_balance: int
    pending_delta: int
    transactions: Tuple[CreditTransaction, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)
    purchase_session: Optional[PurchaseSession] = None
    is_creating_session: bool = False
    is_verifying_purchase: bool = False
    is_fetching_history: bool = False
    is_fetching_balance: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "serverBalance": self.server_balance,
            "pendingDelta": self.pending_delta,
            "transactions": [t.to_dict() for t in self.transactions],
            "pagination": self.pagination.to_dict(),
            "purchaseSession": self.purchase_session.to_dict() if self.purchase_session else None,
            "isCreatingSession": self.is_creating_session,
            "isVerifyingPurchase": self.is_verifying_purchase,
            "isFetchingHistory": self.is_fetching_history,
            "isFetchingBalance": self.is_fetching_balance,
            "error": self.error,
        }


def transactions_from(items: Optional[List[Dict[str, Any]]]) -> Tuple[CreditTransaction, ...]:
    """Parse a list of server transaction records."""
    return tuple(CreditTransaction.from_dict(item) for item in (items or []) if isinstance(item, dict))
