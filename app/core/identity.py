from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

ADMIN_GROUP = "admin"
PAID_GROUP = "paid"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    id: str
    groups: tuple[str, ...] = field(default_factory=tuple)
    kind: Literal["authenticated"] = "authenticated"

    @property
    def is_admin(self) -> bool:
        return ADMIN_GROUP in self.groups


@dataclass(frozen=True)
class AnonymousIdentity:
    kind: Literal["anonymous"] = "anonymous"

    @property
    def is_admin(self) -> bool:
        return False


Identity = Union[AuthenticatedIdentity, AnonymousIdentity]

ANONYMOUS = AnonymousIdentity()


def owner_key(identity: Identity) -> str:
    # Storage/rate-limit scope for an identity
    if isinstance(identity, AuthenticatedIdentity):
        return identity.id
    return "anonymous"
