"""
Session data models.

These models represent who is signed in and how sure we are about it.

    User             - identity record as returned by /api/auth/me
    AuthConfidence   - UNKNOWN / OPTIMISTIC (restored from cache) / CONFIRMED
    SessionPhase     - state machine position
    SessionSnapshot  - frozen view handed to routes and the interceptor

Thread Safety:
    SessionSnapshot is frozen and its User is a private copy, so a snapshot
    can be read from any thread while the state machine moves on.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, Optional


class AuthConfidence(Enum):
    """
    How much the session's authenticated flag can be trusted.

    Lifecycle:
        UNKNOWN -> (cache hit) OPTIMISTIC -> (session check / login) CONFIRMED
    """

    UNKNOWN = "unknown"
    """Nothing cached, nothing checked."""

    OPTIMISTIC = "optimistic"
    """Restored from the credential cache, verification pending."""

    CONFIRMED = "confirmed"
    """The server confirmed the session (or confirmed there is none)."""


class SessionPhase(Enum):
    """
    Position in the session state machine.

    Lifecycle:
        ANONYMOUS -> VALIDATING -> (AUTHENTICATED | ANONYMOUS_CONFIRMED)
        AUTHENTICATED -> ANONYMOUS_CONFIRMED   (logout, forced clear)
        explicit login failure -> ERROR
    """

    ANONYMOUS = "anonymous"
    VALIDATING = "validating"
    AUTHENTICATED = "authenticated"
    ANONYMOUS_CONFIRMED = "anonymous_confirmed"
    ERROR = "error"


# Server field name -> attribute name
_USER_FIELDS = {
    "id": "id",
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "displayName": "display_name",
    "creditsBalance": "credits_balance",
    "preferredLanguage": "preferred_language",
    "isEmailVerified": "is_email_verified",
}


@dataclass
class User:
    """
    Signed-in user record.

    Unknown server fields are kept in ``extra`` so a cached record round-trips
    without losing data.
    """

    id: Any
    """Server identifier (int or string depending on backend)."""

    email: str = ""

    first_name: str = ""

    last_name: str = ""

    display_name: str = ""
    """Name to show; derived from first/last name or email when absent."""

    credits_balance: int = 0
    """Balance as last reported by the server."""

    preferred_language: str = "en"

    is_email_verified: bool = False

    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.display_name:
            full_name = f"{self.first_name} {self.last_name}".strip()
            self.display_name = full_name or self.email

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        """Create from the server's camelCase shape (also accepts snake_case)."""
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        attr_names = set(_USER_FIELDS.values())

        for key, value in data.items():
            if key in _USER_FIELDS:
                values[_USER_FIELDS[key]] = value
            elif key in attr_names:
                values[key] = value
            elif key == "_id" and "id" not in data:
                values["id"] = value
            else:
                extra[key] = deepcopy(value)

        balance = values.get("credits_balance")
        try:
            values["credits_balance"] = int(balance) if balance is not None else 0
        except (TypeError, ValueError):
            values["credits_balance"] = 0

        values["is_email_verified"] = bool(values.get("is_email_verified", False))
        values["preferred_language"] = values.get("preferred_language") or "en"
        for text_field in ("email", "first_name", "last_name", "display_name"):
            values[text_field] = values.get(text_field) or ""

        return cls(id=values.pop("id", None), extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the server's camelCase shape (used for the cache)."""
        data = deepcopy(self.extra)
        data.update({
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "displayName": self.display_name,
            "creditsBalance": self.credits_balance,
            "preferredLanguage": self.preferred_language,
            "isEmailVerified": self.is_email_verified,
        })
        return data

    def with_balance(self, balance: int) -> "User":
        """Copy of this user with a different credits balance."""
        return replace(self, credits_balance=balance, extra=deepcopy(self.extra))


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Immutable view of the session record.

    ``user.credits_balance`` is projected from the credit ledger at the
    moment the snapshot is taken, so it always matches the credits view.
    """

    user: Optional[User]
    is_authenticated: bool
    is_loading: bool
    error: Optional[str]
    has_attempted_auth: bool
    is_validating_session: bool
    email_verification_sent: bool
    confidence: AuthConfidence
    phase: SessionPhase

    def to_dict(self) -> Dict[str, Any]:
        """JSON form for the presentation layer."""
        return {
            "user": self.user.to_dict() if self.user else None,
            "isAuthenticated": self.is_authenticated,
            "isLoading": self.is_loading,
            "error": self.error,
            "hasAttemptedAuth": self.has_attempted_auth,
            "isValidatingSession": self.is_validating_session,
            "emailVerificationSent": self.email_verification_sent,
            "confidence": self.confidence.value,
            "phase": self.phase.value,
        }
