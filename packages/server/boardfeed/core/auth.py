"""
Identity Context adapter.

Identity verification and tenant resolution happen upstream; requests reach
this service with a signed bearer token whose claims carry the verified user
id (``sub``) and organization id (``org_id``). This module only verifies the
signature and exposes the pair to route handlers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from boardfeed.core.config import get_settings
from boardfeed.core.errors import NotAuthenticated, TenantMismatch

log = structlog.get_logger()
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """A verified (user, tenant) pair."""

    user_id: uuid.UUID
    org_id: uuid.UUID

    def require_tenant(self, org_id: uuid.UUID) -> None:
        """Reject access to an entity owned by another tenant."""
        if org_id != self.org_id:
            raise TenantMismatch()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

def create_identity_token(
    user_id: uuid.UUID,
    org_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Mint a signed identity token (local development and tests)."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_identity_token(token: str) -> Identity:
    """Verify a token and extract the identity.

    Raises NotAuthenticated when the signature, expiry, or claims are invalid,
    including a token without a tenant.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        raise NotAuthenticated("Invalid or expired identity token")

    sub = payload.get("sub")
    org = payload.get("org_id")
    if not sub or not org:
        raise NotAuthenticated("Identity token is missing user or organization")
    try:
        return Identity(user_id=uuid.UUID(sub), org_id=uuid.UUID(org))
    except ValueError:
        raise NotAuthenticated("Malformed identity claims")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Identity]:
    """Identity for read endpoints: anonymous callers get ``None``."""
    if credentials is None:
        return None
    try:
        return decode_identity_token(credentials.credentials)
    except NotAuthenticated:
        log.debug("auth.anonymous_read", reason="invalid_token")
        return None


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """Identity for mutating endpoints: absent or invalid tokens are rejected."""
    if credentials is None:
        raise NotAuthenticated()
    return decode_identity_token(credentials.credentials)
