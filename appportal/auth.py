"""Session tokens and the request guards built on them.

Sessions are stateless: the signed token is the whole session and nothing is
stored server-side. Logging out only clears the client cookie, so a token
that leaks stays valid until it expires.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Callable, FrozenSet, Iterable, Mapping, Optional

import jwt
from flask import g, request

from .errors import ForbiddenError, UnauthorizedError

ACCESS_TOKEN_COOKIE = "accessToken"
TOKEN_ALGORITHM = "HS256"
SESSION_DURATION = timedelta(days=1)

_COOKIE_OPTIONS = {
    "httponly": True,
    "secure": False,
    "samesite": "Lax",
    "path": "/",
}


class Role(str, enum.Enum):
    INSTRUCTOR = "instructor"
    STUDENT = "student"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        for role in cls:
            if role.value == value:
                return role
        return None

    @classmethod
    def permits(cls, value, allowed: Iterable["Role"]) -> bool:
        """Return True when ``value`` names a role inside ``allowed``."""
        role = cls.parse(value)
        return role is not None and role in allowed


@dataclass(frozen=True)
class Identity:
    email: str
    user_id: str
    role: Optional[str] = None

    @classmethod
    def from_user(cls, user: Mapping[str, object]) -> "Identity":
        role = user.get("role")
        return cls(
            email=str(user.get("email") or ""),
            user_id=str(user.get("_id") or ""),
            role=None if role is None else str(role),
        )

    @classmethod
    def from_claims(cls, claims: Mapping[str, object]) -> "Identity":
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise jwt.InvalidTokenError("Token is missing the email claim.")
        role = claims.get("role")
        return cls(
            email=email,
            user_id=str(claims.get("userId") or ""),
            role=None if role is None else str(role),
        )

    def to_claims(self) -> dict:
        return {"email": self.email, "userId": self.user_id, "role": self.role}


def issue_session_token(
    identity: Identity,
    secret: str,
    *,
    now: Optional[datetime] = None,
    lifetime: timedelta = SESSION_DURATION,
) -> str:
    issued_at = now or datetime.now(timezone.utc)
    payload = identity.to_claims()
    payload["iat"] = issued_at
    payload["exp"] = issued_at + lifetime
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def decode_session_token(token: str, secret: str) -> Identity:
    """Return the identity carried by ``token``.

    Raises ``jwt.InvalidTokenError`` (or a subclass such as
    ``jwt.ExpiredSignatureError``) when the token cannot be trusted.
    """
    claims = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    return Identity.from_claims(claims)


def set_session_cookie(response, token: str):
    response.set_cookie(ACCESS_TOKEN_COOKIE, token, **_COOKIE_OPTIONS)
    return response


def clear_session_cookie(response):
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **_COOKIE_OPTIONS)
    return response


def current_identity() -> Optional[Identity]:
    return g.get("identity")


def verify_session(secret: str) -> Callable:
    """Build a decorator that requires a valid session cookie.

    On success the decoded :class:`Identity` is stored on ``flask.g``.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            token = request.cookies.get(ACCESS_TOKEN_COOKIE)
            if not token:
                raise UnauthorizedError("no token provided")
            try:
                g.identity = decode_session_token(token, secret)
            except jwt.InvalidTokenError as exc:
                raise UnauthorizedError("invalid token") from exc
            return view(*args, **kwargs)

        return wrapper

    return decorator


def require_role(*roles: Role) -> Callable:
    allowed: FrozenSet[Role] = frozenset(Role(role) for role in roles)
    if not allowed:
        raise ValueError("require_role needs at least one role.")

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            identity = current_identity()
            if identity is None or not identity.role:
                raise ForbiddenError("Role required")
            if not Role.permits(identity.role, allowed):
                raise ForbiddenError("Insufficient permissions")
            return view(*args, **kwargs)

        return wrapper

    return decorator
