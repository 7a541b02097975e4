"""
Bearer credential resolution for outgoing resource calls.

A provider turns its source (fixed token, callback or nothing) into a
``CallContext`` for one specific call. The resolved header only ever lives in
that context; no client object or module global is modified.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from shared.logging import get_logger

BEARER_PREFIX = "Bearer "

TokenCallback = Callable[..., Union[Optional[str], Awaitable[Optional[str]]]]
TokenSource = Union[str, TokenCallback, None]


def apply_bearer_scheme(token: Optional[str]) -> Optional[str]:
    """Prefix ``token`` with the bearer scheme unless it already carries it."""
    if not token:
        return None
    if token.startswith(BEARER_PREFIX):
        return token
    return f"{BEARER_PREFIX}{token}"


@dataclass(frozen=True)
class CallContext:
    """Per-call request metadata handed to fetch functions."""
    authorization: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def has_credentials(self) -> bool:
        return self.authorization is not None

    def headers(self) -> Dict[str, str]:
        headers = dict(self.extra_headers)
        if self.authorization:
            headers["Authorization"] = self.authorization
        return headers


ANONYMOUS = CallContext()


class AuthTokenProvider:
    """Resolves the bearer token for a call from a literal, a callback or nothing."""

    def __init__(self, source: TokenSource = None):
        if source is not None and not isinstance(source, str) and not callable(source):
            raise TypeError("Token source must be a string, a callable or None")
        self._source = source
        self.logger = get_logger("petstore.auth_provider")

    @property
    def is_anonymous(self) -> bool:
        return self._source is None

    async def resolve(self, context: Any = None) -> Optional[str]:
        """Return the raw token for ``context`` or ``None``."""
        source = self._source
        if source is None or isinstance(source, str):
            return source or None

        if _accepts_argument(source):
            token = source(context)
        else:
            token = source()
        if inspect.isawaitable(token):
            token = await token
        return token or None

    async def credentials(self, context: Any = None) -> CallContext:
        """Resolve the token and wrap it into a call context."""
        header = apply_bearer_scheme(await self.resolve(context))
        if header is None:
            self.logger.debug("No credential resolved, calling anonymously")
            return ANONYMOUS
        return CallContext(authorization=header)


def _accepts_argument(func: Callable) -> bool:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    positional = (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.VAR_POSITIONAL,
    )
    return any(parameter.kind in positional for parameter in signature.parameters.values())


def as_provider(auth: Union["AuthTokenProvider", TokenSource]) -> AuthTokenProvider:
    """Coerce a raw token source into a provider."""
    if isinstance(auth, AuthTokenProvider):
        return auth
    return AuthTokenProvider(auth)
