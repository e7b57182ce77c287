"""
Services layer for StorybookWeb.

This module contains the stateful services behind the JSON endpoints:
- SessionStateMachine: session record, auth operations, credential cache
- CreditLedger / CreditBalanceReconciler / CreditService: credit balance,
  history and purchases
- PrintOrderWizard / PrintOrderService: print order steps and live cost

Thread Model:
    Main Thread (Flask, threaded request handling)
    └── SessionCheck thread (one-shot session check at startup)

All services share ONE StorybookAPIClient, so every response passes through
the unauthorized-response interceptor installed on it.
"""

from .credit_service import CreditLedger, CreditBalanceReconciler, CreditService
from .session_service import SessionStateMachine
from .print_order_service import PrintOrderWizard, PrintOrderService

__all__ = [
    "CreditLedger",
    "CreditBalanceReconciler",
    "CreditService",
    "SessionStateMachine",
    "PrintOrderWizard",
    "PrintOrderService",
]
