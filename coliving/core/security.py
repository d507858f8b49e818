"""Session token checks for API routes and the cron shared secret.

Logins live in the main web app. It forwards the signed session as a bearer
JWT whose ``sub`` is the user ID and whose ``role`` is one of the app roles;
this service only verifies it.
"""

import enum
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError as PydanticValidationError

from coliving.core.config import settings
from coliving.core.exceptions import ForbiddenError, UnauthorizedError

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, enum.Enum):
    tenant = "tenant"
    community_manager = "community_manager"
    property_owner = "property_owner"


class SessionUser(BaseModel):
    id: str
    role: Role
    email: Optional[str] = None


def issue_session_token(
    user_id: str, role: Role, email: Optional[str] = None, ttl: Optional[timedelta] = None,
) -> str:
    """Sign a session token the same way the web app does (CLI and tests)."""
    expires = datetime.now(timezone.utc) + (ttl or timedelta(minutes=settings.JWT_EXPIRY_MINUTES))
    claims = {"sub": user_id, "role": Role(role).value, "exp": expires}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def read_session_token(token: str) -> SessionUser:
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return SessionUser(id=claims.get("sub"), role=claims.get("role"), email=claims.get("email"))
    except (JWTError, PydanticValidationError):
        raise UnauthorizedError("Invalid or expired session")


class RoleGate:
    """Dependency admitting only sessions whose role is in ``roles``."""

    def __init__(self, *roles: Role):
        self.roles = frozenset(roles)

    async def __call__(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> SessionUser:
        if credentials is None:
            raise UnauthorizedError("Unauthorized")
        user = read_session_token(credentials.credentials)
        if user.role not in self.roles:
            raise ForbiddenError("Forbidden")
        return user


# Audit views are owner-only; reminder operations are open to managers too.
require_owner = RoleGate(Role.property_owner)
require_staff = RoleGate(Role.property_owner, Role.community_manager)


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Check ``Authorization: Bearer <CRON_SECRET>`` on scheduler calls.

    Fails closed: with no CRON_SECRET configured every call is rejected.
    """
    expected = settings.CRON_SECRET
    if not expected or credentials is None:
        raise UnauthorizedError("Unauthorized")
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise UnauthorizedError("Unauthorized")
