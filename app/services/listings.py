from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import AuthenticatedIdentity, Identity
from app.core.ids import gen_sortable_id
from app.models.base import iso_utc, utcnow
from app.models.listing import LISTING_STATUSES, Listing
from app.models.outbox import OutboxEvent
from app.services import listing_store
from app.services.accounts import find_by_external_id
from app.services import audit
from app.services.listing_validation import validate_listing
from app.workflows.engine import execution_name
from app.workflows.listing_submission import WORKFLOW_NAME as LISTING_WORKFLOW


SUBMITTED_MESSAGE = "Property submitted for processing. You will be notified once it has been reviewed."


def enqueue_event(
    db: AsyncSession,
    *,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: dict[str, Any],
    created_by: str | None,
) -> OutboxEvent:
    event = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload=payload,
        status="pending",
        created_by=created_by,
    )
    db.add(event)
    return event


def _actor_id(identity: Identity) -> str | None:
    return identity.id if isinstance(identity, AuthenticatedIdentity) else None


async def submit_listing(db: AsyncSession, *, identity: Identity, body: dict[str, Any]) -> dict[str, Any]:
    """
    Accept a submission for asynchronous processing. Nothing is validated
    here beyond shape; the submission workflow reports validation errors.
    """
    listing_id = f"prop_{gen_sortable_id()}"
    timestamp = iso_utc(utcnow())

    cognito_user_id = _actor_id(identity)
    user_id = None
    if cognito_user_id:
        account = await find_by_external_id(db, cognito_user_id)
        user_id = account.id if account else None

    listing_input = {k: v for k, v in body.items() if k not in ("userId", "cognitoUserId")}
    payload: dict[str, Any] = {
        "propertyId": listing_id,
        "input": listing_input,
        "timestamp": timestamp,
    }
    if user_id:
        payload["userId"] = user_id
    if cognito_user_id:
        payload["cognitoUserId"] = cognito_user_id

    enqueue_event(
        db,
        event_type="listing.submitted",
        aggregate_type="listing",
        aggregate_id=listing_id,
        payload=payload,
        created_by=cognito_user_id,
    )
    await db.flush()

    return {
        "propertyId": listing_id,
        "executionName": execution_name(LISTING_WORKFLOW, listing_id, timestamp),
        "message": SUBMITTED_MESSAGE,
    }


async def require_listing(db: AsyncSession, listing_id: str) -> Listing:
    listing = await listing_store.get_listing(db, listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail="Property not found")
    return listing


def ensure_owner_or_admin(listing: Listing, identity: Identity) -> AuthenticatedIdentity:
    if not isinstance(identity, AuthenticatedIdentity):
        raise HTTPException(status_code=401, detail="Authentication required")
    if identity.is_admin:
        return identity
    if listing.submitted_by is None or listing.submitted_by != identity.id:
        raise HTTPException(status_code=403, detail="Not authorized to modify this property")
    return identity


def can_view(listing: Listing, identity: Identity) -> bool:
    if listing.is_public and listing.status == "ACTIVE":
        return True
    if not isinstance(identity, AuthenticatedIdentity):
        return False
    return identity.is_admin or (listing.submitted_by is not None and listing.submitted_by == identity.id)


async def update_listing(
    db: AsyncSession,
    *,
    identity: Identity,
    listing_id: str,
    changes: dict[str, Any],
) -> Listing:
    listing = await require_listing(db, listing_id)
    actor = ensure_owner_or_admin(listing, identity)

    if "status" in changes:
        if not actor.is_admin:
            raise HTTPException(status_code=403, detail="Only admins can change property status")
        if changes["status"] not in LISTING_STATUSES:
            raise HTTPException(status_code=422, detail=f"Invalid status: {changes['status']}")

    merged = {**listing.to_dict(), **{k: v for k, v in changes.items() if k != "status"}}
    result = validate_listing(merged)
    if not result.valid:
        raise HTTPException(status_code=422, detail={"errors": result.errors})

    previous_status = listing.status
    changed = listing_store.apply_changes(listing, changes)
    if changed:
        audit.record_listing_action(
            db,
            listing,
            actor_id=actor.id,
            action=audit.LISTING_UPDATED,
            from_status=previous_status,
            detail={"fields": changed},
        )
    await db.flush()
    return listing


async def approve_listing(db: AsyncSession, *, admin: AuthenticatedIdentity, listing_id: str) -> Listing:
    listing = await require_listing(db, listing_id)
    previous_status = listing.status
    try:
        listing_store.mark_approved(listing, actor_id=admin.id)
    except listing_store.ListingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await db.flush()
    audit.record_listing_action(db, listing, actor_id=admin.id, action=audit.LISTING_APPROVED, from_status=previous_status)
    enqueue_event(
        db,
        event_type="listing.approved",
        aggregate_type="listing",
        aggregate_id=listing.id,
        payload={"listing": listing.to_dict(), "timestamp": iso_utc(utcnow())},
        created_by=admin.id,
    )
    return listing


async def reject_listing(db: AsyncSession, *, admin: AuthenticatedIdentity, listing_id: str, reason: str) -> Listing:
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=422, detail="Rejection reason is required")

    listing = await require_listing(db, listing_id)
    previous_status = listing.status
    try:
        listing_store.mark_rejected(listing, actor_id=admin.id, reason=reason)
    except listing_store.ListingStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await db.flush()
    audit.record_listing_action(
        db,
        listing,
        actor_id=admin.id,
        action=audit.LISTING_REJECTED,
        from_status=previous_status,
        detail={"reason": reason},
    )
    enqueue_event(
        db,
        event_type="listing.rejected",
        aggregate_type="listing",
        aggregate_id=listing.id,
        payload={"listing": listing.to_dict(), "reason": reason, "timestamp": iso_utc(utcnow())},
        created_by=admin.id,
    )
    return listing


async def delete_listing(db: AsyncSession, *, identity: Identity, listing_id: str) -> list[str]:
    """Remove the record; returns the media keys the caller should clean up after commit."""
    listing = await require_listing(db, listing_id)
    actor = ensure_owner_or_admin(listing, identity)
    media_keys = list(listing.images or [])

    audit.record_listing_action(
        db,
        listing,
        actor_id=actor.id,
        action=audit.LISTING_DELETED,
        from_status=listing.status,
        detail={"images": len(media_keys)},
    )
    await listing_store.delete_listing(db, listing)
    return media_keys
