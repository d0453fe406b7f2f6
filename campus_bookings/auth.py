"""
This module turns a request's bearer token into the identity the ledger acts for.

Tokens are issued elsewhere; they are HS256 JWTs carrying the user id in `sub`
and the user's roles in `roles`.
"""
import logging
from dataclasses import dataclass, field

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .errors import Forbidden, Unauthorized
from .models import Role

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, *roles: Role) -> bool:
        return any(role.value in self.roles for role in roles)


def decode_identity(token: str) -> Identity:
    """
    Verifies a token and returns the identity it asserts.

    Raises:
        Unauthorized: If the token is invalid, expired or has no subject.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        logger.warning(f"Rejected identity token: {exc}")
        raise Unauthorized("Invalid or expired token") from exc

    subject = claims.get("sub") or claims.get("id")
    if not subject:
        raise Unauthorized("Token has no subject")
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Identity(id=str(subject), roles=frozenset(roles))


async def get_current_identity(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> Identity:
    """
    Dependency that provides the identity of the caller.
    """
    if credentials is None:
        raise Unauthorized()
    return decode_identity(credentials.credentials)


def require_roles(*roles: Role):
    """
    Dependency factory that only lets identities holding one of `roles` through.
    """
    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not identity.has_role(*roles):
            raise Forbidden(f"Role {', '.join(sorted(identity.roles)) or 'none'} is not allowed to do this")
        return identity
    return dependency
