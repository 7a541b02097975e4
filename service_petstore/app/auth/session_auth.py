"""
Session-backed login flows.

Session storage and cookie encryption belong to the web framework; these
functions only read and write the session mapping and report where the
caller should go next.
"""

from typing import Any, Awaitable, Callable, MutableMapping, Optional

from pydantic import BaseModel

from shared.errors import AuthError, ValidationError
from shared.logging import get_logger, set_user_context
from ..results import Err, Redirect, Result
from .token_provider import AuthTokenProvider

logger = get_logger("petstore.session_auth")


class User(BaseModel):
    id: str
    name: str
    email: Optional[str] = None


CredentialVerifier = Callable[[str, str], Awaitable[Optional[User]]]


async def demo_verifier(email: str, password: str) -> Optional[User]:
    """Accepts any credentials; stands in for a real identity provider."""
    return User(id="1", name="test", email=email)


async def login(
    session: MutableMapping[str, Any],
    email: str,
    password: str,
    verify: CredentialVerifier = demo_verifier,
    redirect_to: str = "/",
) -> Result:
    """Verify credentials and start a session."""
    if not email or not password:
        return Err(ValidationError("Email and password are required"))

    user = await verify(email, password)
    if user is None:
        logger.info("Login rejected", email=email)
        return Err(AuthError("Invalid credentials"))

    session["user_id"] = user.id
    session["email"] = user.email
    set_user_context(user.id)
    logger.info("Login succeeded", user_id=user.id)
    return Redirect(redirect_to)


def logout(session: MutableMapping[str, Any], redirect_to: str = "/") -> Result:
    session.clear()
    return Redirect(redirect_to)


def current_user(session: MutableMapping[str, Any]) -> Optional[User]:
    user_id = session.get("user_id")
    if not user_id:
        return None
    return User(id=str(user_id), name="test", email=session.get("email"))


def session_token_provider(session: MutableMapping[str, Any]) -> AuthTokenProvider:
    """Provider for calls made on behalf of the session's user.

    The user id doubles as the demo bearer token. Anonymous sessions resolve
    to no credential.
    """
    user_id = session.get("user_id")
    return AuthTokenProvider(str(user_id) if user_id else None)
