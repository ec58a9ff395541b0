"""Password hashing and session tokens for chunkdrive.

Passwords are hashed with bcrypt; the cost and salt travel inside the hash.

Sessions are HS256 JWTs whose ``sub`` claim is the user id. A token is
accepted from the session cookie or an ``Authorization: Bearer`` header.
"""

import logging
import time

import bcrypt
from fastapi import Request
from jose import JWTError, jwt

from chunkdrive.access import Identity
from chunkdrive.catalog.store import CatalogStore

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72

_JWT_ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    """Hash a password with bcrypt and a fresh salt.

    Raises:
        ValueError: If the password is longer than ``MAX_PASSWORD_BYTES``.
    """
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password longer than {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash.

    Returns False for a wrong password and for any malformed hash.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionSigner:
    """Issues and verifies session tokens.

    Attributes:
        ttl_seconds: Lifetime of issued tokens.
        cookie_name: Name of the session cookie.
    """

    def __init__(self, secret: str, ttl_seconds: int, cookie_name: str = "app_session") -> None:
        if not secret:
            raise ValueError("auth.secret must not be empty")
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self.cookie_name = cookie_name

    def issue(self, user_id: str) -> str:
        """Return a signed token for ``user_id``."""
        now = int(time.time())
        claims = {"sub": user_id, "iat": now, "exp": now + self.ttl_seconds}
        return jwt.encode(claims, self._secret, algorithm=_JWT_ALGORITHM)

    def verify(self, token: str) -> str | None:
        """Return the user id of a valid token, or None."""
        try:
            claims = jwt.decode(token, self._secret, algorithms=[_JWT_ALGORITHM])
        except JWTError:
            return None
        sub = claims.get("sub")
        return sub if isinstance(sub, str) and sub else None

    def token_from_request(self, request: Request) -> str | None:
        """Extract a session token from the Authorization header or cookie."""
        header = request.headers.get("authorization", "")
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
        return request.cookies.get(self.cookie_name) or None


async def resolve_identity(
    request: Request, signer: SessionSigner, catalog: CatalogStore
) -> Identity | None:
    """Resolve the caller of a request, or None for anonymous callers.

    Tokens that fail verification or name a deleted user are treated as
    anonymous rather than as errors.
    """
    token = signer.token_from_request(request)
    if not token:
        return None
    user_id = signer.verify(token)
    if user_id is None:
        logger.debug("Ignoring invalid session token")
        return None
    user = await catalog.get_user(user_id)
    if user is None:
        return None
    return Identity(user_id=user.id, email=user.email, full_name=user.full_name)
