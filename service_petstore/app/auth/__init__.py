"""
Credential handling for outgoing petstore calls.
"""

from .credential_store import (
    CredentialStorage,
    InMemoryCredentialStorage,
    clear_token,
    get_stored_token,
    store_token,
    stored_token_provider,
)
from .token_provider import ANONYMOUS, AuthTokenProvider, CallContext, apply_bearer_scheme, as_provider

__all__ = [
    "ANONYMOUS",
    "AuthTokenProvider",
    "CallContext",
    "CredentialStorage",
    "InMemoryCredentialStorage",
    "apply_bearer_scheme",
    "as_provider",
    "clear_token",
    "get_stored_token",
    "store_token",
    "stored_token_provider",
]
