"""
Persisted credential storage.

The backing store is external (browser storage, a keyring, a file); the query
layer only needs string get/set/remove. Tokens read from it reach outgoing
calls through ``stored_token_provider``.
"""

import threading
from typing import Dict, Optional, Protocol, runtime_checkable

from shared.logging import get_logger
from .token_provider import AuthTokenProvider

DEFAULT_STORAGE_KEY = "petstore_token"

logger = get_logger("petstore.credentials")


@runtime_checkable
class CredentialStorage(Protocol):
    """String-keyed persistence for credentials."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryCredentialStorage:
    """Process-local credential storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


def get_stored_token(storage: CredentialStorage, key: str = DEFAULT_STORAGE_KEY) -> Optional[str]:
    return storage.get(key) or None


def store_token(storage: CredentialStorage, token: str, key: str = DEFAULT_STORAGE_KEY) -> None:
    """Persist ``token``. Calls made afterwards pick it up on resolution."""
    storage.set(key, token)
    logger.info("Stored credential", storage_key=key)


def clear_token(storage: CredentialStorage, key: str = DEFAULT_STORAGE_KEY) -> None:
    storage.remove(key)
    logger.info("Cleared credential", storage_key=key)


def stored_token_provider(storage: CredentialStorage, key: str = DEFAULT_STORAGE_KEY) -> AuthTokenProvider:
    """Provider that reads the persisted token at every resolution."""

    def _lookup() -> Optional[str]:
        return get_stored_token(storage, key)

    return AuthTokenProvider(_lookup)
