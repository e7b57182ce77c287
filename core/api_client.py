"""
HTTP client for the storybook REST API.

This module wraps a single requests.Session. Every call goes through
request(), which:

    1. Sends the request with the configured timeout
    2. Runs the session's response hooks (the unauthorized-response
       interceptor is installed there, see core.interceptor)
    3. Logs method, path, status and elapsed time
    4. Returns the decoded JSON body for 2xx responses, or raises the typed
       error from core.exceptions

THREAD SAFETY:
    The client is shared by all Flask worker threads. requests.Session is
    safe for concurrent requests as long as its configuration (hooks,
    headers) is not changed while requests are in flight, so hooks must be
    installed at startup, before the app serves requests.

Usage:
    api_client = StorybookAPIClient("https://api.example.com", timeout_seconds=15)
    api_client.add_response_hook(interceptor)

    body = api_client.login("a@b.com", "secret")
    user = body["data"]["user"]
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import requests

from .exceptions import ApiError, TransportError, error_from_response
from logging_config import get_logger, log_api_call


# Module logger
logger = get_logger(__name__)


class StorybookAPIClient:
    """
    Client for the storybook REST API.

    Endpoint wrappers are thin: they build the path and payload and return
    the decoded body (``{success, data, message}``). Interpretation of the
    body belongs to the services.

    Attributes:
        base_url: API origin without trailing slash
        timeout_seconds: Per-request timeout
    """

    AUTH_API = "/api/auth"
    USER_API = "/api/user"
    CREDITS_API = "/api/credits"
    PRINT_ORDERS_API = "/api/print-orders"
    CHARACTERS_API = "/api/characters"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API origin, e.g. "https://api.example.com"
            timeout_seconds: Timeout applied to every request
            session: Pre-configured requests.Session (tests mount fake adapters)

        Raises:
            ValueError: If base_url is empty
        """
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

        logger.debug(f"StorybookAPIClient initialized for {self.base_url}")

    @property
    def session(self) -> requests.Session:
        """Underlying requests session (carries the auth cookie)."""
        return self._session

    def add_response_hook(self, hook: Callable[..., Any]) -> None:
        """
        Install a hook that sees every response before it is interpreted.

        Must be called before the client is shared between threads.
        """
        self._session.hooks["response"].append(hook)

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path below base_url, starting with "/"
            json: JSON body
            params: Query string parameters

        Returns:
            Decoded body of a 2xx response (empty dict for an empty body)

        Raises:
            TransportError: If no response was received
            ApiError: (or subclass) for non-2xx responses and undecodable bodies
        """
        url = f"{self.base_url}{path}"
        started = time.monotonic()

        try:
            response = self._session.request(
                method,
                url,
                json=json,
                params=params,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            log_api_call(logger, method, path, 0, elapsed_ms)
            raise TransportError(method, path, str(e)) from e

        elapsed_ms = (time.monotonic() - started) * 1000
        log_api_call(logger, method, path, response.status_code, elapsed_ms)

        body = self._decode(response)

        if not response.ok:
            raise error_from_response(response.status_code, body)

        if body is None:
            raise ApiError(response.status_code, "Invalid response from server", "INVALID_RESPONSE")

        return body

    @staticmethod
    def _decode(response: requests.Response) -> Optional[Dict[str, Any]]:
        """Decode a JSON object body; None when it is not one."""
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    # =========================================================================
    # AUTH
    # =========================================================================

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self.request("POST", f"{self.AUTH_API}/login", json={"email": email, "password": password})

    def logout(self) -> Dict[str, Any]:
        return self.request("POST", f"{self.AUTH_API}/logout")

    def get_current_user(self) -> Dict[str, Any]:
        return self.request("GET", f"{self.AUTH_API}/me")

    def register(self, registration: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{self.AUTH_API}/register", json=registration)

    def verify_email(self, token: str) -> Dict[str, Any]:
        return self.request("GET", f"{self.AUTH_API}/verify-email", params={"token": token})

    def resend_verification(self, email: str) -> Dict[str, Any]:
        return self.request("POST", f"{self.AUTH_API}/resend-verification", json={"email": email})

    def forgot_password(self, email: str) -> Dict[str, Any]:
        return self.request("POST", f"{self.AUTH_API}/forgot-password", json={"email": email})

    def reset_password(self, token: str, password: str) -> Dict[str, Any]:
        return self.request(
            "POST", f"{self.AUTH_API}/reset-password", json={"token": token, "password": password}
        )

    # =========================================================================
    # USER PROFILE
    # =========================================================================

    def get_profile(self) -> Dict[str, Any]:
        return self.request("GET", f"{self.USER_API}/profile")

    def update_profile(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("PUT", f"{self.USER_API}/profile", json=profile)

    def request_password_change(self) -> Dict[str, Any]:
        return self.request("POST", f"{self.USER_API}/request-password-change")

    def verify_email_change(self, token: str) -> Dict[str, Any]:
        return self.request("GET", f"{self.USER_API}/verify-email-change", params={"token": token})

    def update_language_preference(self, language: str) -> Dict[str, Any]:
        return self.request("PUT", f"{self.USER_API}/language-preference", json={"language": language})

    # =========================================================================
    # CREDITS
    # =========================================================================

    def create_purchase_session(self, credit_amount: int, context: str = "pricing") -> Dict[str, Any]:
        """Start a checkout for ``credit_amount`` credits; body carries the redirect URL."""
        return self.request(
            "POST",
            f"{self.CREDITS_API}/purchase",
            json={"creditAmount": credit_amount, "context": context},
        )

    def verify_purchase(self, session_id: str) -> Dict[str, Any]:
        return self.request("POST", f"{self.CREDITS_API}/verify-purchase", json={"sessionId": session_id})

    def get_credit_balance(self) -> Dict[str, Any]:
        return self.request("GET", f"{self.CREDITS_API}/balance")

    def get_credit_history(self, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return self.request("GET", f"{self.CREDITS_API}/history", params={"page": page, "limit": limit})

    # =========================================================================
    # PRINT ORDERS
    # =========================================================================

    def calculate_cost(self, order: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{self.PRINT_ORDERS_API}/calculate-cost", json=order)

    def get_shipping_options(self, request_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{self.PRINT_ORDERS_API}/shipping-options", json=request_data)

    def create_print_order_checkout(self, order: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", f"{self.PRINT_ORDERS_API}/checkout", json=order)

    def list_print_orders(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", self.PRINT_ORDERS_API, params=params or {})

    def get_print_order(self, order_id: str) -> Dict[str, Any]:
        return self.request("GET", f"{self.PRINT_ORDERS_API}/{quote(str(order_id), safe='')}")

    def cancel_print_order(self, order_id: str) -> Dict[str, Any]:
        return self.request("DELETE", f"{self.PRINT_ORDERS_API}/{quote(str(order_id), safe='')}")

    def get_print_order_status(self, order_id: str) -> Dict[str, Any]:
        return self.request("GET", f"{self.PRINT_ORDERS_API}/{quote(str(order_id), safe='')}/status")

    # =========================================================================
    # CHARACTERS
    # =========================================================================

    def delete_character(self, character_id: str, force: bool = False) -> Dict[str, Any]:
        """
        Delete a character.

        Raises:
            ConfirmationRequiredError: If the character is used in books and
                ``force`` is False; the error carries ``usedInBooks``
        """
        path = f"{self.CHARACTERS_API}/{quote(str(character_id), safe='')}"
        if force:
            path = f"{path}/force"
        return self.request("DELETE", path)
