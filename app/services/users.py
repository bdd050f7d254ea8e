from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import AuthenticatedIdentity
from app.models.base import iso_utc, utcnow
from app.models.user_account import USER_TIERS
from app.services.accounts import get_account
from app.services.listings import enqueue_event
from app.workflows.engine import execution_name
from app.workflows.tier_upgrade import WORKFLOW_NAME as UPGRADE_WORKFLOW
from app.workflows.user_registration import WORKFLOW_NAME as REGISTRATION_WORKFLOW


async def register_user(db: AsyncSession, *, registration: dict[str, Any]) -> dict[str, Any]:
    """Queue account provisioning for a freshly confirmed identity."""
    timestamp = iso_utc(utcnow())
    payload = {**registration, "timestamp": timestamp}
    enqueue_event(
        db,
        event_type="user.registered",
        aggregate_type="user",
        aggregate_id=registration["cognitoUserId"],
        payload=payload,
        created_by="registration",
    )
    await db.flush()
    return {"executionName": execution_name(REGISTRATION_WORKFLOW, registration["cognitoUserId"], timestamp)}


async def request_upgrade(db: AsyncSession, *, admin: AuthenticatedIdentity, user_id: str, tier: str) -> dict[str, Any]:
    if tier not in USER_TIERS:
        raise HTTPException(status_code=422, detail=f"Invalid tier: {tier}")
    if await get_account(db, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    timestamp = iso_utc(utcnow())
    enqueue_event(
        db,
        event_type="user.upgrade_requested",
        aggregate_type="user",
        aggregate_id=user_id,
        payload={"userId": user_id, "tier": tier, "requestedBy": admin.id, "timestamp": timestamp},
        created_by=admin.id,
    )
    await db.flush()
    return {"executionName": execution_name(UPGRADE_WORKFLOW, user_id, timestamp)}
