import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.identity import AuthenticatedIdentity, Identity, owner_key
from app.models.base import iso_utc
from app.models.listing import STATUS_PENDING_REVIEW
from app.schemas.common import MessageResponse
from app.schemas.listing import (
    ListingAuditOut,
    ListingOut,
    ListingSubmission,
    ListingSubmitted,
    ListingUpdate,
    RejectRequest,
)
from app.services import listing_store
from app.services.audit import listing_history
from app.services.auth import get_identity, require_admin, require_authenticated
from app.services.handles import ServiceHandles, get_services
from app.services.idempotency import claim_idempotency_key, idempotency_key_header, remember_response
from app.services.listings import (
    approve_listing,
    can_view,
    delete_listing,
    reject_listing,
    require_listing,
    submit_listing,
    update_listing,
)
from app.services.media import delete_listing_media

log = logging.getLogger(__name__)

router = APIRouter()


def _out(listing) -> ListingOut:
    return ListingOut.model_validate(listing.to_dict())


@router.post("/listings", response_model=ListingSubmitted, status_code=202)
async def submit(
    payload: ListingSubmission,
    identity: Identity = Depends(get_identity),
    idempotency_key: str | None = Depends(idempotency_key_header),
    db: AsyncSession = Depends(get_db),
) -> ListingSubmitted:
    body = payload.model_dump(by_alias=True, exclude_unset=True)

    claimed = None
    if idempotency_key:
        claimed, replay = await claim_idempotency_key(
            db, scope=f"listings.submit:{owner_key(identity)}", key=idempotency_key, body=body
        )
        if replay:
            return ListingSubmitted.model_validate(replay)

    resp = await submit_listing(db, identity=identity, body=body)

    if claimed is not None:
        await remember_response(db, claimed, resp)

    await db.commit()
    return ListingSubmitted.model_validate(resp)


@router.get("/listings", response_model=list[ListingOut])
async def browse(
    state: str | None = None,
    city: str | None = None,
    property_type: str | None = Query(default=None, alias="propertyType"),
    listing_type: str | None = Query(default=None, alias="listingType"),
    min_price: float | None = Query(default=None, alias="minPrice", ge=0),
    max_price: float | None = Query(default=None, alias="maxPrice", ge=0),
    limit: int = Query(default=listing_store.DEFAULT_PAGE_SIZE, ge=1, le=listing_store.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_store.search_public(
        db,
        state=state,
        city=city,
        property_type=property_type,
        listing_type=listing_type,
        min_price=min_price,
        max_price=max_price,
        limit=limit,
    )
    return [_out(r) for r in rows]


@router.get("/listings/mine", response_model=list[ListingOut])
async def my_listings(
    identity: AuthenticatedIdentity = Depends(require_authenticated),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_store.list_by_owner(db, identity.id)
    return [_out(r) for r in rows]


@router.get("/listings/pending", response_model=list[ListingOut])
async def pending_listings(
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_store.list_by_status(db, STATUS_PENDING_REVIEW)
    return [_out(r) for r in rows]


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing(
    listing_id: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await require_listing(db, listing_id)
    if not can_view(listing, identity):
        # unpublished listings are invisible to strangers
        raise HTTPException(status_code=404, detail="Property not found")
    return _out(listing)


@router.patch("/listings/{listing_id}", response_model=ListingOut)
async def patch_listing(
    listing_id: str,
    payload: ListingUpdate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    listing = await update_listing(db, identity=identity, listing_id=listing_id, changes=changes)
    resp = _out(listing)
    await db.commit()
    return resp


@router.delete("/listings/{listing_id}", response_model=MessageResponse)
async def remove_listing(
    listing_id: str,
    identity: Identity = Depends(get_identity),
    services: ServiceHandles = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    media_keys = await delete_listing(db, identity=identity, listing_id=listing_id)
    await db.commit()

    # the record is gone; stray media is only wasted space
    removed = delete_listing_media(services.store, media_keys)
    log.info("listing %s deleted (%d/%d media objects removed)", listing_id, removed, len(media_keys))
    return MessageResponse(message="Property deleted successfully")


@router.post("/listings/{listing_id}/approve", response_model=ListingOut)
async def approve(
    listing_id: str,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await approve_listing(db, admin=admin, listing_id=listing_id)
    resp = _out(listing)
    await db.commit()
    return resp


@router.post("/listings/{listing_id}/reject", response_model=ListingOut)
async def reject(
    listing_id: str,
    payload: RejectRequest,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await reject_listing(db, admin=admin, listing_id=listing_id, reason=payload.reason)
    resp = _out(listing)
    await db.commit()
    return resp


# kept after deletion, so no existence check against properties
@router.get("/listings/{listing_id}/history", response_model=list[ListingAuditOut])
async def listing_audit_history(
    listing_id: str,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[ListingAuditOut]:
    entries = await listing_history(db, listing_id)
    return [
        ListingAuditOut(
            action=e.action,
            actor_id=e.actor_id,
            from_status=e.from_status,
            to_status=e.to_status,
            detail=e.detail or {},
            created_at=iso_utc(e.created_at),
        )
        for e in entries
    ]
