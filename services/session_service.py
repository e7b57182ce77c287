"""
Session state machine.

Owns the session record (who is signed in, how sure we are, what is in
flight) and keeps the stored-credential cache in step with it.

States (SessionPhase):
    ANONYMOUS            - initial, nothing attempted
    VALIDATING           - session check or login in flight
    AUTHENTICATED        - user known (OPTIMISTIC from cache or CONFIRMED)
    ANONYMOUS_CONFIRMED  - check finished without a session, or signed out
    ERROR                - explicit login failed

Rules:
    - Only one session check ever runs per process: the guard
      (has_attempted_auth, is_validating_session) is checked and set under
      the lock before any network I/O
    - A failed session check never clears an authenticated session and never
      sets ``error``; only forced_clear() (called by the 401 interceptor)
      demotes a session
    - Login/registration failures are surfaced: ``error`` is set and the
      typed exception is re-raised
    - logout() always clears local state, whatever the server says

The credits balance is not stored here. Snapshots read it from the
CreditLedger, and the cache is written with the ledger's server balance
(never with optimistic local deltas).

Thread Safety:
    - All state lives behind self._lock
    - Network calls are made WITHOUT holding the lock, so the interceptor's
      forced_clear() can run from inside a response hook
    - Lock order: session -> ledger, session -> cache; never the reverse

Usage:
    session = SessionStateMachine(api_client, cache, ledger)
    session.begin_session_check_in_background()   # at startup

    session.login("a@b.com", "secret")
    session.snapshot().to_dict()
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from core.api_client import StorybookAPIClient
from core.credential_cache import StoredCredentialCache
from core.exceptions import ApiError, AuthenticationError, StorybookWebError
from models.session import AuthConfidence, SessionPhase, SessionSnapshot, User
from modules.sanitize import sanitize_text
from services.credit_service import CreditLedger
from logging_config import get_logger, set_thread_name


# Module logger
logger = get_logger(__name__)

# Profile fields cleaned before they are sent to the API
PROFILE_TEXT_FIELDS = ("firstName", "lastName", "displayName")
MAX_NAME_LENGTH = 50
MAX_LANGUAGE_CODE_LENGTH = 10


class SessionStateMachine:
    """
    Session record plus the operations that move it between states.

    Attributes:
        has_attempted_auth: Whether the session has ever been resolved
    """

    def __init__(
        self,
        api_client: StorybookAPIClient,
        cache: StoredCredentialCache,
        ledger: CreditLedger,
    ):
        """
        Initialize and hydrate optimistically from the credential cache.

        The cache is read here and never again; afterwards it only mirrors
        the in-memory state.

        Args:
            api_client: Client for the auth and user endpoints
            cache: Stored-credential cache
            ledger: Credit ledger holding the balance
        """
        self._api = api_client
        self._cache = cache
        self._ledger = ledger
        self._lock = threading.Lock()

        self._user: Optional[User] = None
        self._is_authenticated = False
        self._is_loading = False
        self._error: Optional[str] = None
        self._has_attempted_auth = False
        self._is_validating_session = False
        self._email_verification_sent = False
        self._confidence = AuthConfidence.UNKNOWN
        self._phase = SessionPhase.ANONYMOUS

        # Bumped on every clear; results of checks started earlier are dropped
        self._generation = 0

        self._check_thread: Optional[threading.Thread] = None

        self._hydrate()

    def _hydrate(self) -> None:
        """Restore the cached user as OPTIMISTIC, or clear a half-written pair."""
        cached = self._cache.read()
        flag = self._cache.is_authenticated_flag()

        if cached is not None and flag:
            user = User.from_dict(cached)
            self._user = user
            self._is_authenticated = True
            self._confidence = AuthConfidence.OPTIMISTIC
            self._phase = SessionPhase.AUTHENTICATED
            self._ledger.apply_server_balance(user.credits_balance)
            logger.info(f"Restored cached session for user {user.id} (pending verification)")
        elif cached is not None or flag:
            logger.warning("Inconsistent stored credential, clearing it")
            self._cache.write(None)

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    def snapshot(self) -> SessionSnapshot:
        """Frozen view with the balance projected from the ledger."""
        with self._lock:
            user = self._user.with_balance(self._ledger.balance) if self._user else None
            return SessionSnapshot(
                user=user,
                is_authenticated=self._is_authenticated,
                is_loading=self._is_loading,
                error=self._error,
                has_attempted_auth=self._has_attempted_auth,
                is_validating_session=self._is_validating_session,
                email_verification_sent=self._email_verification_sent,
                confidence=self._confidence,
                phase=self._phase,
            )

    @property
    def has_attempted_auth(self) -> bool:
        with self._lock:
            return self._has_attempted_auth

    # =========================================================================
    # SESSION CHECK
    # =========================================================================

    def begin_session_check(self) -> bool:
        """
        Resolve the session with the server, at most once per process.

        Returns:
            True if this call performed the check, False if the guard
            rejected it (already attempted or in flight)
        """
        started = self._start_session_check()
        if started is None:
            return False
        self._run_session_check(*started)
        return True

    def begin_session_check_in_background(self) -> Optional[threading.Thread]:
        """
        Same as begin_session_check() but runs the request on a daemon thread.

        The guard is taken on the calling thread, so a second caller is
        rejected immediately.

        Returns:
            The started thread, or None if the guard rejected the call
        """
        started = self._start_session_check()
        if started is None:
            return None

        thread = threading.Thread(
            target=self._session_check_thread_main,
            args=started,
            name="SessionCheck",
            daemon=True,
        )
        self._check_thread = thread
        thread.start()
        return thread

    def wait_for_session_check(self, timeout: float = 5.0) -> None:
        """Join the background check thread, if any (used at shutdown)."""
        thread = self._check_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Session check thread did not complete in time")

    def _start_session_check(self) -> Optional[tuple]:
        """Check-and-set the guard. Returns (ticket, generation) or None."""
        with self._lock:
            if self._has_attempted_auth or self._is_validating_session:
                logger.debug("Session check skipped: already attempted or in flight")
                return None
            self._has_attempted_auth = True
            self._is_validating_session = True
            self._is_loading = True
            self._phase = SessionPhase.VALIDATING
            generation = self._generation

        return self._ledger.next_ticket(), generation

    def _session_check_thread_main(self, ticket: int, generation: int) -> None:
        set_thread_name("SessionCheck")
        self._run_session_check(ticket, generation)

    def _run_session_check(self, ticket: int, generation: int) -> None:
        try:
            body = self._api.get_current_user()
            user_data = self._user_data_from(body)
        except StorybookWebError as e:
            # Swallowed: a failed background check is "no session", not an error
            with self._lock:
                self._is_validating_session = False
                self._is_loading = False
                if self._is_authenticated:
                    self._phase = SessionPhase.AUTHENTICATED
                else:
                    self._phase = SessionPhase.ANONYMOUS_CONFIRMED
                    if isinstance(e, AuthenticationError):
                        self._confidence = AuthConfidence.CONFIRMED
            logger.info(f"Session check found no valid session: {e.message}")
            return

        with self._lock:
            self._is_validating_session = False
            self._is_loading = False
            if generation != self._generation:
                logger.info("Session check result dropped: session cleared meanwhile")
                if not self._is_authenticated:
                    self._phase = SessionPhase.ANONYMOUS_CONFIRMED
                return
            user = self._apply_user_locked(user_data, ticket)

        logger.info(f"Session confirmed for user {user.id}")

    # =========================================================================
    # LOGIN / LOGOUT
    # =========================================================================

    def login(self, email: str, password: str) -> SessionSnapshot:
        """
        Sign in with email and password.

        Raises:
            StorybookWebError: On any failure; ``error`` holds its message
        """
        with self._lock:
            self._phase = SessionPhase.VALIDATING
        ticket = self._ledger.next_ticket()

        try:
            body = self._run("Login", lambda: self._api.login(email, password))
            user_data = self._user_data_from(body)
        except StorybookWebError as e:
            with self._lock:
                self._error = e.message
                self._is_loading = False
                self._phase = SessionPhase.AUTHENTICATED if self._is_authenticated else SessionPhase.ERROR
            raise

        with self._lock:
            self._has_attempted_auth = True
            user = self._apply_user_locked(user_data, ticket)

        logger.info(f"User {user.id} logged in")
        return self.snapshot()

    def logout(self) -> SessionSnapshot:
        """
        Sign out. The server call is best-effort; local state is always cleared.
        """
        with self._lock:
            self._is_loading = True

        try:
            self._api.logout()
        except StorybookWebError as e:
            logger.warning(f"Remote logout failed, clearing local session anyway: {e.message}")

        with self._lock:
            self._clear_locked()

        logger.info("User logged out")
        return self.snapshot()

    def forced_clear(self) -> bool:
        """
        Drop an authenticated session locally (the API answered 401).

        Idempotent: the state is re-checked under the lock, so concurrent
        calls produce one transition.

        Returns:
            True if this call changed the state
        """
        with self._lock:
            if not self._is_authenticated:
                self._has_attempted_auth = True
                return False
            self._clear_locked()

        logger.info("Session force-cleared")
        return True

    # =========================================================================
    # ACCOUNT OPERATIONS
    # =========================================================================

    def register(self, registration: Dict[str, Any]) -> SessionSnapshot:
        """
        Create an account. The user must verify their email before signing in.

        Args:
            registration: firstName, lastName, email, password and optionally
                preferredLanguage
        """
        payload = dict(registration)
        for name in PROFILE_TEXT_FIELDS:
            if name in payload:
                payload[name] = sanitize_text(payload[name], MAX_NAME_LENGTH)
        payload.setdefault("preferredLanguage", "en")

        self._run("Registration", lambda: self._api.register(payload))

        with self._lock:
            self._email_verification_sent = True
        logger.info("Registration submitted, verification email sent")
        return self.snapshot()

    def verify_email(self, token: str) -> SessionSnapshot:
        """Confirm an email address; signs the user in when the API returns one."""
        ticket = self._ledger.next_ticket()
        body = self._run("Email verification", lambda: self._api.verify_email(token))

        data = body.get("data") or {}
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            with self._lock:
                self._has_attempted_auth = True
                self._email_verification_sent = False
                user = self._apply_user_locked(data["user"], ticket)
            logger.info(f"Email verified, user {user.id} signed in")
        return self.snapshot()

    def resend_verification(self, email: str) -> SessionSnapshot:
        self._run("Resend verification", lambda: self._api.resend_verification(email))
        with self._lock:
            self._email_verification_sent = True
        return self.snapshot()

    def forgot_password(self, email: str) -> SessionSnapshot:
        self._run("Forgot password", lambda: self._api.forgot_password(email))
        return self.snapshot()

    def reset_password(self, token: str, password: str) -> SessionSnapshot:
        self._run("Reset password", lambda: self._api.reset_password(token, password))
        return self.snapshot()

    def request_password_change(self) -> SessionSnapshot:
        self._run("Password change request", self._api.request_password_change)
        return self.snapshot()

    def update_profile(self, profile: Dict[str, Any]) -> SessionSnapshot:
        """
        Update profile fields and store the user the API returns.

        Text fields are stripped of markup before they are sent.
        """
        payload = dict(profile)
        for name in PROFILE_TEXT_FIELDS:
            if name in payload:
                payload[name] = sanitize_text(payload[name], MAX_NAME_LENGTH)

        ticket = self._ledger.next_ticket()
        body = self._run("Profile update", lambda: self._api.update_profile(payload))
        self._store_returned_user(body, ticket)
        return self.snapshot()

    def verify_email_change(self, token: str) -> SessionSnapshot:
        ticket = self._ledger.next_ticket()
        body = self._run("Email change verification", lambda: self._api.verify_email_change(token))
        self._store_returned_user(body, ticket)
        return self.snapshot()

    def update_language_preference(self, language: str) -> SessionSnapshot:
        """Save the preferred UI language for the signed-in user."""
        language = sanitize_text(language, MAX_LANGUAGE_CODE_LENGTH).lower()
        if not language:
            raise ValueError("language is required")

        body = self._run("Language update", lambda: self._api.update_language_preference(language))

        data = body.get("data") or {}
        saved = data.get("preferredLanguage", language) if isinstance(data, dict) else language
        with self._lock:
            if self._user is not None:
                self._user.preferred_language = saved
                self._persist_locked()
        return self.snapshot()

    # =========================================================================
    # SMALL TRANSITIONS
    # =========================================================================

    def clear_error(self) -> None:
        with self._lock:
            self._error = None
            if self._phase is SessionPhase.ERROR:
                self._phase = SessionPhase.ANONYMOUS_CONFIRMED

    def clear_email_verification_sent(self) -> None:
        with self._lock:
            self._email_verification_sent = False

    def mark_auth_attempted(self) -> None:
        with self._lock:
            self._has_attempted_auth = True

    def set_user(self, user_data: Optional[Dict[str, Any]]) -> SessionSnapshot:
        """Replace the user record directly; None signs out locally."""
        with self._lock:
            if user_data is None:
                self._clear_locked()
            else:
                self._apply_user_locked(user_data, None)
        return self.snapshot()

    def persist_current_user(self) -> None:
        """
        Re-write the cache from memory (after the ledger's server balance
        changed). Does nothing while signed out.
        """
        with self._lock:
            self._persist_locked()

    # =========================================================================
    # INTERNALS (self._lock held where the name says so)
    # =========================================================================

    def _run(self, action: str, call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Run an explicit user action: loading on, error cleared, error
        recorded and re-raised on failure.
        """
        with self._lock:
            self._is_loading = True
            self._error = None

        try:
            body = call()
            if body.get("success") is False:
                raise ApiError(200, body.get("message") or f"{action} failed", body.get("code"), body)
        except StorybookWebError as e:
            with self._lock:
                self._is_loading = False
                self._error = e.message
            logger.warning(f"{action} failed: {e.message}")
            raise

        with self._lock:
            self._is_loading = False
        return body

    @staticmethod
    def _user_data_from(body: Dict[str, Any]) -> Dict[str, Any]:
        """Extract ``data.user`` from an auth response."""
        if body.get("success") is False:
            raise ApiError(200, body.get("message"), body.get("code"), body)
        data = body.get("data") or {}
        user = data.get("user") if isinstance(data, dict) else None
        if not isinstance(user, dict):
            raise ApiError(200, "User missing from response", "INVALID_RESPONSE", body)
        return user

    def _store_returned_user(self, body: Dict[str, Any], ticket: int) -> None:
        data = body.get("data") or {}
        if not isinstance(data, dict) or not isinstance(data.get("user"), dict):
            return
        with self._lock:
            if self._is_authenticated:
                self._apply_user_locked(data["user"], ticket)

    def _apply_user_locked(self, user_data: Dict[str, Any], ticket: Optional[int]) -> User:
        """Make ``user_data`` the signed-in user and mirror it to the cache."""
        user = User.from_dict(user_data)
        self._user = user
        self._is_authenticated = True
        self._error = None
        self._confidence = AuthConfidence.CONFIRMED
        self._phase = SessionPhase.AUTHENTICATED

        if "creditsBalance" in user_data or "credits_balance" in user_data:
            self._ledger.apply_server_balance(user.credits_balance, ticket)

        self._persist_locked()
        return user

    def _persist_locked(self) -> None:
        if not self._is_authenticated or self._user is None:
            return
        self._cache.write(self._user.with_balance(self._ledger.server_balance).to_dict())

    def _clear_locked(self) -> None:
        """Back to confirmed-anonymous; cache and ledger cleared."""
        self._user = None
        self._is_authenticated = False
        self._is_loading = False
        self._error = None
        self._has_attempted_auth = True
        self._is_validating_session = False
        self._email_verification_sent = False
        self._confidence = AuthConfidence.CONFIRMED
        self._phase = SessionPhase.ANONYMOUS_CONFIRMED
        self._generation += 1

        self._ledger.reset()
        self._cache.write(None)
