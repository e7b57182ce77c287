"""
Data models for StorybookWeb.

This module contains dataclasses for:
- Session: signed-in user, confidence and state machine position
- Credits: transactions, pagination, purchase sessions, ledger snapshot
- Print orders: address, shipping options, cost breakdown, wizard snapshot

Snapshots are frozen so routes on any thread can read them while the
services move on.
"""

from .session import User, AuthConfidence, SessionPhase, SessionSnapshot
from .credits import (
    TransactionType,
    CreditTransaction,
    Pagination,
    PurchaseSession,
    CreditPackage,
    CreditsSnapshot,
)
from .print_order import (
    PrintOrderStep,
    ShippingAddress,
    ShippingOption,
    CostBreakdown,
    CostApportionment,
    ReviewQuote,
    WizardSnapshot,
)

__all__ = [
    # Session models
    "User",
    "AuthConfidence",
    "SessionPhase",
    "SessionSnapshot",
    # Credit models
    "TransactionType",
    "CreditTransaction",
    "Pagination",
    "PurchaseSession",
    "CreditPackage",
    "CreditsSnapshot",
    # Print order models
    "PrintOrderStep",
    "ShippingAddress",
    "ShippingOption",
    "CostBreakdown",
    "CostApportionment",
    "ReviewQuote",
    "WizardSnapshot",
]
