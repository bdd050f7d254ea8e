import secrets

from fastapi import Depends, Header, HTTPException

from app.core.config import settings
from app.core.identity import ANONYMOUS, AuthenticatedIdentity, Identity


async def get_identity(
    x_identity_sub: str | None = Header(default=None),
    x_identity_groups: str | None = Header(default=None),
) -> Identity:
    """
    Identity asserted by the gateway in front of the API. A request without a
    subject is anonymous.
    """
    sub = (x_identity_sub or "").strip()
    if not sub:
        return ANONYMOUS

    groups = tuple(g.strip() for g in (x_identity_groups or "").split(",") if g.strip())
    return AuthenticatedIdentity(id=sub, groups=groups)


def require_authenticated(identity: Identity = Depends(get_identity)) -> AuthenticatedIdentity:
    if not isinstance(identity, AuthenticatedIdentity):
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity


def require_admin(identity: AuthenticatedIdentity = Depends(require_authenticated)) -> AuthenticatedIdentity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


async def require_internal_key(x_internal_admin_key: str | None = Header(default=None)) -> None:
    """Service-to-service calls (identity provider hooks, dispatch triggers) present the shared key."""
    expected = settings.internal_admin_key
    if not x_internal_admin_key or not secrets.compare_digest(x_internal_admin_key, expected):
        raise HTTPException(status_code=403, detail="Internal admin key required")
