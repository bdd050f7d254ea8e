from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import ListingAuditEntry
from app.models.listing import Listing


LISTING_APPROVED = "listing.approved"
LISTING_REJECTED = "listing.rejected"
LISTING_UPDATED = "listing.updated"
LISTING_DELETED = "listing.deleted"


def record_listing_action(
    db: AsyncSession,
    listing: Listing,
    *,
    actor_id: str | None,
    action: str,
    from_status: str | None = None,
    detail: dict[str, Any] | None = None,
) -> ListingAuditEntry:
    """Stage an audit row in the caller's transaction; it commits with the change it describes."""
    entry = ListingAuditEntry(
        listing_id=listing.id,
        actor_id=actor_id,
        action=action,
        from_status=from_status,
        to_status=None if action == LISTING_DELETED else listing.status,
        detail=detail or {},
    )
    db.add(entry)
    return entry


async def listing_history(db: AsyncSession, listing_id: str) -> list[ListingAuditEntry]:
    stmt = (
        select(ListingAuditEntry)
        .where(ListingAuditEntry.listing_id == listing_id)
        .order_by(ListingAuditEntry.created_at.asc(), ListingAuditEntry.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
