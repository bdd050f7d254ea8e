from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from fastapi import Header, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.base import utcnow
from app.models.idempotency import IdempotencyKey


log = logging.getLogger(__name__)

MAX_KEY_LENGTH = 200


@dataclass(frozen=True)
class IdempotentRequest:
    scope: str
    key: str
    body_hash: str


def body_fingerprint(body: dict[str, Any]) -> str:
    raw = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return "sha256:" + hashlib.sha256(raw).hexdigest()


async def idempotency_key_header(idempotency_key: str | None = Header(default=None)) -> str | None:
    if idempotency_key is not None and len(idempotency_key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long")
    return idempotency_key or None


async def claim_idempotency_key(
    db: AsyncSession,
    *,
    scope: str,
    key: str,
    body: dict[str, Any],
) -> tuple[IdempotentRequest, dict[str, Any] | None]:
    """
    Reserve (scope, key) in the caller's transaction. Returns the stored
    response when the same body was already accepted; the same key with a
    different body is a 409. An expired reservation is taken over.
    """
    request = IdempotentRequest(scope=scope, key=key, body_hash=body_fingerprint(body))
    now = utcnow()

    stmt = select(IdempotencyKey).where(IdempotencyKey.scope == scope, IdempotencyKey.key == key)
    existing = (await db.execute(stmt)).scalar_one_or_none()
    if existing is not None:
        expires_at = existing.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=now.tzinfo)
        if expires_at > now:
            if existing.body_hash != request.body_hash:
                raise HTTPException(status_code=409, detail="Idempotency-Key reuse with different request")
            return request, dict(existing.response or {})
        await db.delete(existing)
        await db.flush()

    db.add(IdempotencyKey(
        scope=scope,
        key=key,
        body_hash=request.body_hash,
        response={},
        expires_at=now + timedelta(hours=settings.idempotency_ttl_hours),
    ))
    # unique constraint turns a concurrent duplicate into an IntegrityError here
    await db.flush()
    return request, None


async def remember_response(db: AsyncSession, request: IdempotentRequest, response: dict[str, Any]) -> None:
    stmt = select(IdempotencyKey).where(IdempotencyKey.scope == request.scope, IdempotencyKey.key == request.key)
    row = (await db.execute(stmt)).scalar_one()
    row.response = response
    await db.flush()


async def purge_expired_idempotency_keys(db: AsyncSession) -> int:
    result = await db.execute(
        delete(IdempotencyKey)
        .where(IdempotencyKey.expires_at < utcnow())
        .execution_options(synchronize_session=False)
    )
    purged = int(result.rowcount or 0)
    if purged:
        log.info("idempotency: purged %d expired keys", purged)
    return purged
