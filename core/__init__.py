"""
Core module for StorybookWeb.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- storage: String key-value stores (memory, JSON file)
- credential_cache: Stored-credential cache over a storage backend
- api_client: requests-based client for the storybook REST API
- interceptor: Response hook that clears an expired session on 401
"""

from .exceptions import (
    StorybookWebError,
    TransportError,
    ApiError,
    AuthenticationError,
    ValidationError,
    ConfirmationRequiredError,
    ServerError,
    StorageError,
    WizardStateError,
)
from .storage import MemoryStorage, JsonFileStorage, create_storage
from .credential_cache import StoredCredentialCache
from .api_client import StorybookAPIClient
from .interceptor import UnauthorizedResponseInterceptor

__all__ = [
    "StorybookWebError",
    "TransportError",
    "ApiError",
    "AuthenticationError",
    "ValidationError",
    "ConfirmationRequiredError",
    "ServerError",
    "StorageError",
    "WizardStateError",
    "MemoryStorage",
    "JsonFileStorage",
    "create_storage",
    "StoredCredentialCache",
    "StorybookAPIClient",
    "UnauthorizedResponseInterceptor",
]
