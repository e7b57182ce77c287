"""
Unauthorized-response interceptor.

Demotes a signed-in session when the API answers 401. Installed as a
requests response hook, so it sees every response of the shared API client
before the client turns it into a result or an AuthenticationError.

Rules:
    - Only a 401 can trigger a clear
    - Only while the session currently believes it is authenticated; the
      expected 401 of an anonymous startup check is ignored
    - The response is passed through untouched; the caller still gets the
      AuthenticationError

Concurrent 401s (several requests failing together after the session
expired) each call the clear function, but it re-checks the state under the
session lock and only the first call changes anything.

The interceptor holds no reference to a global store: it is constructed with
a read accessor and a clear function.

Usage:
    interceptor = UnauthorizedResponseInterceptor(
        get_session=session_machine.snapshot,
        force_clear=session_machine.forced_clear,
    )
    api_client.add_response_hook(interceptor)
"""

from __future__ import annotations

import threading
from typing import Callable

import requests

from models.session import SessionSnapshot
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class UnauthorizedResponseInterceptor:
    """
    Response hook that force-clears an authenticated session on 401.

    Attributes:
        cleared_count: Number of responses that actually demoted the session
    """

    def __init__(
        self,
        get_session: Callable[[], SessionSnapshot],
        force_clear: Callable[[], bool],
    ):
        """
        Args:
            get_session: Returns the current session snapshot
            force_clear: Clears the session; returns True if it changed state
        """
        self._get_session = get_session
        self._force_clear = force_clear
        self._count_lock = threading.Lock()
        self.cleared_count = 0

    def __call__(self, response: requests.Response, *args, **kwargs) -> requests.Response:
        if response.status_code == 401:
            self.handle_unauthorized(response.request.method if response.request else "?", response.url)
        return response

    def handle_unauthorized(self, method: str, url: str) -> bool:
        """
        Clear the session if it is authenticated right now.

        Returns:
            True if this call demoted the session
        """
        if not self._get_session().is_authenticated:
            logger.debug(f"401 on {method} {url} while anonymous - ignored")
            return False

        if self._force_clear():
            with self._count_lock:
                self.cleared_count += 1
            logger.info(f"401 on {method} {url} - cleared auth state (likely expired session)")
            return True
        return False
