"""
Stored-credential cache.

Persists the signed-in user record so the next process start can restore the
session optimistically, before the server has confirmed it.

Two keys are kept together:
    auth_user             - JSON serialized user record
    auth_isAuthenticated  - "true" while a user is stored

They are written and cleared as a pair; there is never a stored user
without the flag or the flag without a user.

Failure handling:
    - Corrupted JSON on read: both keys are dropped, read() returns None
    - Backend failures (StorageError): logged and swallowed, the session keeps
      working from memory for the rest of the process

Usage:
    cache = StoredCredentialCache(JsonFileStorage(path))
    user = cache.read()          # once, at startup
    cache.write(user.to_dict())  # after login / session check / profile update
    cache.write(None)            # on logout or forced clear
"""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, Optional

from .exceptions import StorageError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

USER_KEY = "auth_user"
AUTH_FLAG_KEY = "auth_isAuthenticated"


class StoredCredentialCache:
    """
    Pairs the serialized user with the authenticated flag in a key-value store.

    Attributes:
        storage: Backend with get/set/remove over string values
    """

    def __init__(self, storage):
        self._storage = storage
        self._lock = threading.Lock()

    @property
    def storage(self):
        return self._storage

    def read(self) -> Optional[Dict[str, Any]]:
        """
        Return the stored user record, or None.

        Never raises. A record that does not decode to a JSON object is
        treated as corruption: both keys are removed.
        """
        with self._lock:
            try:
                raw = self._storage.get(USER_KEY)
            except StorageError as e:
                logger.error(f"Error reading stored user: {e}")
                return None

            if raw is None:
                return None

            try:
                user = json.loads(raw)
            except (TypeError, json.JSONDecodeError) as e:
                logger.error(f"Error parsing stored user, dropping it: {e}")
                self._clear_quietly()
                return None

            if not isinstance(user, dict):
                logger.error("Stored user is not an object, dropping it")
                self._clear_quietly()
                return None

            return user

    def is_authenticated_flag(self) -> bool:
        """Whether the stored authenticated flag is set."""
        with self._lock:
            try:
                return self._storage.get(AUTH_FLAG_KEY) == "true"
            except StorageError as e:
                logger.error(f"Error reading stored auth flag: {e}")
                return False

    def write(self, user: Optional[Dict[str, Any]]) -> None:
        """
        Store ``user`` with the flag, or clear both when ``user`` is None.

        If the flag cannot be written after the user was, the user entry is
        rolled back so the pair stays consistent.
        """
        with self._lock:
            if user is None:
                self._clear_quietly()
                return

            try:
                serialized = json.dumps(user, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                logger.error(f"Error serializing user for storage: {e}")
                return

            try:
                self._storage.set(USER_KEY, serialized)
            except StorageError as e:
                logger.error(f"Error storing user data: {e}")
                return

            try:
                self._storage.set(AUTH_FLAG_KEY, "true")
            except StorageError as e:
                logger.error(f"Error storing auth flag, rolling back user: {e}")
                self._clear_quietly()

    def _clear_quietly(self) -> None:
        """Remove both keys; failures are logged only."""
        for key in (USER_KEY, AUTH_FLAG_KEY):
            try:
                self._storage.remove(key)
            except StorageError as e:
                logger.error(f"Error clearing stored credential '{key}': {e}")
