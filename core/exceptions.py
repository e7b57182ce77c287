"""
Custom exceptions for StorybookWeb.

Exception Hierarchy:
    StorybookWebError (base)
    ├── TransportError                 - no response received (network, timeout)
    ├── ApiError                       - server answered with a failure
    │   ├── AuthenticationError        - 401, session missing or expired
    │   ├── ValidationError            - 4xx with field-level detail
    │   ├── ConfirmationRequiredError  - operation needs an explicit force flag
    │   └── ServerError                - 5xx
    ├── StorageError                   - credential storage backend failed
    └── WizardStateError               - step not allowed on the print order wizard

Usage:
    Every ApiError carries the HTTP status plus the machine-readable code and
    message from the response body. Turning them into user-facing text is the
    presentation layer's job. Nothing here retries automatically.
"""

from typing import Optional, Dict, Any


class StorybookWebError(Exception):
    """
    Base exception for all StorybookWeb errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for JSON error responses."""
        return {"success": False, "message": self.message}


# =============================================================================
# TRANSPORT ERRORS - no response from the remote API
# =============================================================================

class TransportError(StorybookWebError):
    """
    The request never produced a response.

    Typical causes:
    - API host unreachable or DNS failure
    - Request timed out
    - Connection dropped mid-response

    Background session checks swallow this. Explicit user actions surface it
    as a generic retryable failure.
    """

    def __init__(self, method: str, path: str, reason: str):
        message = "Network error. Please check your connection."
        details = {"method": method, "path": path, "reason": reason}
        super().__init__(message, details)
        self.method = method
        self.path = path
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "code": "NETWORK_ERROR"}


# =============================================================================
# API ERRORS - the server responded with a failure
# =============================================================================

class ApiError(StorybookWebError):
    """
    Base class for failure responses from the remote API.

    The body shape is ``{message, code, errors}``; any of them may be absent.
    """

    default_message = "An error occurred"

    def __init__(
        self,
        status: int,
        message: Optional[str] = None,
        code: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        message = message or self.default_message
        details = {"status": status}
        if code:
            details["code"] = code
        super().__init__(message, details)
        self.status = status
        self.code = code
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": False, "message": self.message}
        if self.code:
            data["code"] = self.code
        return data


class AuthenticationError(ApiError):
    """
    The API rejected the request with 401.

    When the client believes it is signed in, the unauthorized-response
    interceptor demotes the session before this propagates.
    """

    default_message = "Authentication required"


class ValidationError(ApiError):
    """
    The request was rejected with field-level detail.

    ``field_errors`` maps field name to message. It is surfaced to the form
    that sent the request and never clears session state.
    """

    default_message = "Validation failed"

    def __init__(
        self,
        status: int = 400,
        message: Optional[str] = None,
        code: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        field_errors: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status, message, code, payload)
        self.field_errors = field_errors if field_errors is not None else _field_errors_from(payload)
        if self.field_errors:
            self.details["fields"] = sorted(self.field_errors)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = dict(self.field_errors)
        return data


class ConfirmationRequiredError(ApiError):
    """
    The operation affects other entities and needs explicit confirmation.

    ``confirmation_data`` holds the supporting data from the response (for a
    character deletion, the books that use the character). Re-invoke the
    operation with ``force=True`` to proceed.
    """

    default_message = "Confirmation required"

    def __init__(
        self,
        status: int,
        message: Optional[str] = None,
        code: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status, message, code, payload)
        payload = payload or {}
        self.confirmation_data = {
            key: value
            for key, value in payload.items()
            if key not in ("success", "message", "code", "requiresConfirmation")
        }

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["requiresConfirmation"] = True
        data.update(self.confirmation_data)
        return data


class ServerError(ApiError):
    """The API failed with a 5xx status. Surfaced as a generic failure."""

    default_message = "Server error"


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class StorageError(StorybookWebError):
    """
    The credential storage backend could not be read or written.

    The credential cache logs and swallows this so the session degrades to
    memory-only for the rest of the process.
    """

    def __init__(self, operation: str, key: str, reason: str):
        message = f"Credential storage {operation} failed for '{key}'"
        details = {"operation": operation, "key": key, "reason": reason}
        super().__init__(message, details)
        self.operation = operation
        self.key = key


# =============================================================================
# WIZARD ERRORS
# =============================================================================

class WizardStateError(StorybookWebError):
    """
    The print order wizard cannot do this on its current step.

    Raised for things like leaving the method step before a price arrived or
    editing the quantity on review. Nothing was sent to the API.
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message, {"step": step} if step else None)
        self.step = step

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "code": "INVALID_STATE"}


# =============================================================================
# HELPERS
# =============================================================================

def _field_errors_from(payload: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Extract field errors from an error body.

    Accepts ``errors`` as a mapping of field -> message, or as a list of
    ``{field|param|path, message|msg}`` objects (express-validator style).
    """
    if not payload:
        return {}
    errors = payload.get("errors")
    if isinstance(errors, dict):
        return {str(k): str(v) for k, v in errors.items()}
    result: Dict[str, str] = {}
    if isinstance(errors, list):
        for item in errors:
            if not isinstance(item, dict):
                continue
            field = item.get("field") or item.get("param") or item.get("path")
            message = item.get("message") or item.get("msg") or ""
            if field:
                result[str(field)] = str(message)
    return result


def error_from_response(
    status: int,
    payload: Optional[Dict[str, Any]],
) -> ApiError:
    """
    Build the typed ApiError for a failure response.

    Args:
        status: HTTP status code
        payload: Decoded JSON body (or None if the body was not JSON)

    Returns:
        The most specific ApiError subclass for the response
    """
    payload = payload if isinstance(payload, dict) else {}
    message = payload.get("message") or payload.get("error")
    code = payload.get("code") or payload.get("errorCode")

    if payload.get("requiresConfirmation"):
        return ConfirmationRequiredError(status, message, code, payload)
    if status == 401:
        return AuthenticationError(status, message, code, payload)
    if status >= 500:
        return ServerError(status, message, code, payload)
    if status in (400, 422) and payload.get("errors"):
        return ValidationError(status, message, code, payload)
    return ApiError(status, message, code, payload)
