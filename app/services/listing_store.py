from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.listing import (
    STATUS_ACTIVE,
    STATUS_PENDING_REVIEW,
    STATUS_REJECTED,
    Listing,
    pad_price,
)


DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

# submission field -> column attribute
FIELD_COLUMNS = {
    "title": "title",
    "description": "description",
    "price": "price",
    "address": "address",
    "city": "city",
    "state": "state",
    "zipCode": "zip_code",
    "bedrooms": "bedrooms",
    "bathrooms": "bathrooms",
    "squareFeet": "square_feet",
    "propertyType": "property_type",
    "listingType": "listing_type",
    "contactName": "contact_name",
    "contactEmail": "contact_email",
    "contactPhone": "contact_phone",
    "amenities": "amenities",
    "yearBuilt": "year_built",
    "lotSize": "lot_size",
    "parkingSpaces": "parking_spaces",
}


class ListingAlreadyExists(Exception):
    pass


class ListingStateError(Exception):
    """Requested status change does not apply to the listing's current status."""


async def create_listing(
    db: AsyncSession,
    *,
    listing_id: str,
    data: dict[str, Any],
    images: list[str],
    submitted_by: str | None,
) -> Listing:
    """
    Insert a new listing in PENDING_REVIEW. Refuses to overwrite: an existing
    id raises ListingAlreadyExists.
    """
    if await get_listing(db, listing_id) is not None:
        raise ListingAlreadyExists(listing_id)

    now = utcnow()
    listing = Listing(
        id=listing_id,
        images=list(images),
        status=STATUS_PENDING_REVIEW,
        is_public=True,
        submitted_by=submitted_by,
        submitted_at=now,
        updated_at=now,
    )
    for field_name, column in FIELD_COLUMNS.items():
        if field_name in data:
            setattr(listing, column, data[field_name])
    if listing.amenities is None:
        listing.amenities = []

    db.add(listing)
    try:
        await db.flush()
    except IntegrityError as e:
        raise ListingAlreadyExists(listing_id) from e
    return listing


async def get_listing(db: AsyncSession, listing_id: str) -> Listing | None:
    return (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()


def apply_changes(listing: Listing, changes: dict[str, Any]) -> list[str]:
    """Copy submission-named fields onto the row; returns the fields that changed."""
    changed = []
    for field_name, value in changes.items():
        column = FIELD_COLUMNS.get(field_name)
        if column is None:
            if field_name not in ("images", "status"):
                raise KeyError(field_name)
            column = field_name
        if getattr(listing, column) != value:
            setattr(listing, column, value)
            changed.append(field_name)
    if changed:
        listing.updated_at = utcnow()
    return changed


def mark_approved(listing: Listing, *, actor_id: str) -> None:
    if listing.status == STATUS_ACTIVE:
        raise ListingStateError("Property is already approved")
    now = utcnow()
    listing.status = STATUS_ACTIVE
    # approval changes status only; visibility is left as is
    listing.approved_at = now
    listing.approved_by = actor_id
    listing.updated_at = now


def mark_rejected(listing: Listing, *, actor_id: str, reason: str) -> None:
    if listing.status == STATUS_REJECTED:
        raise ListingStateError("Property is already rejected")
    now = utcnow()
    listing.status = STATUS_REJECTED
    listing.is_public = False
    listing.rejected_at = now
    listing.rejected_by = actor_id
    listing.rejection_reason = reason
    listing.updated_at = now


async def delete_listing(db: AsyncSession, listing: Listing) -> None:
    await db.delete(listing)
    await db.flush()


def _page(limit: int | None) -> int:
    return max(1, min(MAX_PAGE_SIZE, limit or DEFAULT_PAGE_SIZE))


def _price_bounds(column, min_price: float | None, max_price: float | None) -> list:
    clauses = []
    if min_price is not None:
        clauses.append(column >= f"PRICE#{pad_price(min_price)}")
    if max_price is not None:
        clauses.append(column <= f"PRICE#{pad_price(max_price)}")
    return clauses


async def list_by_status(db: AsyncSession, status: str, *, limit: int | None = None) -> list[Listing]:
    stmt = (
        select(Listing)
        .where(Listing.status_key == f"STATUS#{status}")
        .order_by(Listing.status_sort.desc())
        .limit(_page(limit))
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_by_owner(db: AsyncSession, submitted_by: str, *, limit: int | None = None) -> list[Listing]:
    stmt = (
        select(Listing)
        .where(Listing.owner_key == f"USER#{submitted_by}")
        .order_by(Listing.owner_sort.desc())
        .limit(_page(limit))
    )
    return list((await db.execute(stmt)).scalars().all())


async def search_public(
    db: AsyncSession,
    *,
    state: str | None = None,
    city: str | None = None,
    property_type: str | None = None,
    listing_type: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    limit: int | None = None,
) -> list[Listing]:
    """
    Browse active public listings through the narrowest access path the
    filters allow. Every other filter is applied in the same query so no
    match is lost to the page window.
    """
    if state and city:
        stmt = select(Listing).where(
            Listing.location_key == f"LOCATION#{state}#{city}",
            *_price_bounds(Listing.location_sort, min_price, max_price),
        ).order_by(Listing.location_sort.asc())
    elif listing_type:
        stmt = select(Listing).where(
            Listing.listing_key == f"LISTING#{listing_type}",
            *_price_bounds(Listing.listing_sort, min_price, max_price),
        ).order_by(Listing.listing_sort.asc())
    elif property_type:
        stmt = select(Listing).where(Listing.type_key == f"TYPE#{property_type}").order_by(Listing.type_sort.desc())
    else:
        stmt = select(Listing).where(Listing.status_key == f"STATUS#{STATUS_ACTIVE}").order_by(Listing.status_sort.desc())

    stmt = stmt.where(Listing.status == STATUS_ACTIVE, Listing.is_public.is_(True))
    if state:
        stmt = stmt.where(Listing.state == state)
    if city:
        stmt = stmt.where(Listing.city == city)
    if property_type:
        stmt = stmt.where(Listing.property_type == property_type)
    if listing_type:
        stmt = stmt.where(Listing.listing_type == listing_type)
    if min_price is not None:
        stmt = stmt.where(Listing.price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Listing.price <= max_price)

    stmt = stmt.limit(_page(limit))
    return list((await db.execute(stmt)).scalars().all())
