"""Account and user-directory handlers for chunkdrive.

Implements:
    - SignUp (POST /api/auth/signup)
    - SignIn (POST /api/auth/signin)
    - SignOut (POST /api/auth/signout)
    - Me (GET /api/auth/me)
    - SearchUsers (GET /api/users/search?q=)
"""

import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chunkdrive.auth import MAX_PASSWORD_BYTES, hash_password, verify_password
from chunkdrive.errors import BadInput, Unauthorized
from chunkdrive.handlers.common import BaseHandler
from chunkdrive.validation import normalize_email

logger = logging.getLogger(__name__)

_MIN_PASSWORD_LENGTH = 8
_SEARCH_LIMIT = 10
_DEFAULT_AVATAR = "/assets/images/avatar.png"


class SignUpBody(BaseModel):
    fullName: str
    email: str
    password: str


class SignInBody(BaseModel):
    email: str
    password: str


class UserHandler(BaseHandler):
    """Handles sign-up, sessions and user search."""

    def _session_response(self, request: Request, body: dict, token: str, status: int) -> Response:
        response = JSONResponse({**body, "token": token}, status_code=status)
        response.set_cookie(
            self.signer.cookie_name,
            token,
            max_age=self.signer.ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
            path="/",
        )
        return response

    async def signup(self, request: Request, body: SignUpBody) -> Response:
        """Create an account and start a session.

        Returns:
            201 with the new user and a session token; the token is also
            set as the session cookie.

        Raises:
            BadInput: If a field is missing or the password is too short.
            EmailInUse: If the email already has an account.
        """
        full_name = body.fullName.strip()
        if not full_name:
            raise BadInput("Full name is required")
        email = normalize_email(body.email)
        if len(body.password) < _MIN_PASSWORD_LENGTH:
            raise BadInput(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters")
        if len(body.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise BadInput(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

        user = await self.catalog.create_user(
            full_name=full_name,
            email=email,
            password_hash=hash_password(body.password),
            avatar=_DEFAULT_AVATAR,
        )
        token = self.signer.issue(user.id)
        return self._session_response(request, {"user": user.to_api()}, token, 201)

    async def signin(self, request: Request, body: SignInBody) -> Response:
        """Verify credentials and start a session.

        Unknown emails and wrong passwords get the same answer.
        """
        user = await self.catalog.get_user_by_email(body.email.strip())
        if user is None or not verify_password(body.password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        logger.info("User signed in", extra={"owner_id": user.id})
        token = self.signer.issue(user.id)
        return self._session_response(request, {"user": user.to_api()}, token, 200)

    async def signout(self, request: Request) -> Response:
        """Clear the session cookie. Always succeeds."""
        response = Response(status_code=204)
        response.delete_cookie(self.signer.cookie_name, path="/")
        return response

    async def me(self, request: Request) -> Response:
        """Return the signed-in user."""
        identity = await self.require_identity(request)
        user = await self.catalog.get_user(identity.user_id)
        if user is None:
            raise Unauthorized()
        return JSONResponse(user.to_api())

    async def search(self, request: Request) -> Response:
        """Find users whose email or name contains the query.

        Used by the share dialog. Never fails: a blank query or any internal
        error yields an empty list.

        Returns:
            200 with ``{"users": [{"$id", "email", "fullName"}, ...]}``.
        """
        query = (request.query_params.get("q") or "").strip()
        if not query:
            return JSONResponse({"users": []})
        try:
            users = await self.catalog.search_users(query, limit=_SEARCH_LIMIT)
        except Exception:
            logger.warning("User search failed", exc_info=True)
            return JSONResponse({"users": []})
        return JSONResponse(
            {"users": [{"$id": u.id, "email": u.email, "fullName": u.full_name} for u in users]}
        )
