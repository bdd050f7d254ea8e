from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.base import iso_utc, utcnow
from app.models.listing import Listing, pad_price
from app.services.audit import listing_history
from app.services.listing_store import MAX_PAGE_SIZE, create_listing, mark_approved
from app.services.listing_validation import validate_listing
from tests.fixtures_seed import IMAGE_BYTES, admin_headers, listing_input, owner_headers, seed_account, seed_listing


@pytest.mark.asyncio
async def test_admin_approves_pending_listing(client, db_session, drain, email_sender):
    await seed_account(db_session)
    await seed_listing(db_session)
    email_sender.fail = True

    r = await client.post("/v1/listings/prop_seed1/approve", headers=admin_headers())
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "ACTIVE"
    assert body["isPublic"] is True
    assert body["approvedBy"] == "sub-admin-1"

    await drain()

    # attempted even though the provider is down, and the approval stands
    assert [m.subject for m in email_sender.attempts] == ["Your Property Has Been Approved!"]
    listing = (await db_session.execute(select(Listing).where(Listing.id == "prop_seed1"))).scalar_one()
    assert listing.status == "ACTIVE"
    assert listing.status_key == "STATUS#ACTIVE"

    history = await listing_history(db_session, "prop_seed1")
    assert [(h.action, h.from_status, h.to_status, h.actor_id) for h in history] == [
        ("listing.approved", "PENDING_REVIEW", "ACTIVE", "sub-admin-1")
    ]


@pytest.mark.asyncio
async def test_admin_rejects_with_reason(client, db_session, drain, email_sender):
    await seed_listing(db_session, submitted_by=None)

    r = await client.post(
        "/v1/listings/prop_seed1/reject",
        json={"reason": "Incomplete photos"},
        headers=admin_headers(),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "REJECTED"
    assert body["isPublic"] is False
    assert body["rejectionReason"] == "Incomplete photos"

    await drain()

    assert len(email_sender.sent) == 1
    message = email_sender.sent[0]
    assert message.to_email == "sam@example.com"
    assert message.subject == "Property Listing Review Update"
    assert "Incomplete photos" in message.text
    assert "Incomplete photos" in message.html


@pytest.mark.asyncio
async def test_review_actions_require_admin(client, db_session):
    await seed_listing(db_session)

    r = await client.post("/v1/listings/prop_seed1/approve")
    assert r.status_code == 401

    r = await client.post("/v1/listings/prop_seed1/approve", headers=owner_headers())
    assert r.status_code == 403

    r = await client.post("/v1/listings/prop_seed1/reject", json={"reason": "x"}, headers=owner_headers())
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_review_state_conflicts(client, db_session):
    await seed_listing(db_session)

    assert (await client.post("/v1/listings/prop_seed1/approve", headers=admin_headers())).status_code == 200
    r = await client.post("/v1/listings/prop_seed1/approve", headers=admin_headers())
    assert r.status_code == 409
    assert r.json()["detail"] == "Property is already approved"

    r = await client.post("/v1/listings/prop_seed1/reject", json={"reason": ""}, headers=admin_headers())
    assert r.status_code == 422

    r = await client.post("/v1/listings/missing/approve", headers=admin_headers())
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_owner_update_keeps_access_keys_in_sync(client, db_session):
    await seed_listing(db_session)

    r = await client.patch(
        "/v1/listings/prop_seed1",
        json={"price": 510000, "city": "Tulsa", "state": "OK", "propertyType": "CONDO", "listingType": "FOR_RENT"},
        headers=owner_headers(),
    )
    assert r.status_code == 200, r.text
    assert r.json()["city"] == "Tulsa"

    listing = (
        await db_session.execute(
            select(Listing).where(Listing.id == "prop_seed1").execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert listing.location_key == "LOCATION#OK#Tulsa"
    assert listing.location_sort == f"PRICE#{pad_price(510000)}"
    assert listing.type_key == "TYPE#CONDO"
    assert listing.type_sort == f"SUBMITTED#{iso_utc(listing.submitted_at)}"
    assert listing.listing_key == "LISTING#FOR_RENT"
    assert listing.listing_sort == f"PRICE#{pad_price(510000)}"

    [entry] = await listing_history(db_session, "prop_seed1")
    assert entry.action == "listing.updated"
    assert entry.actor_id == "sub-owner-1"
    assert sorted(entry.detail["fields"]) == ["city", "listingType", "price", "propertyType", "state"]


@pytest.mark.asyncio
async def test_update_permissions_and_validation(client, db_session):
    await seed_listing(db_session)
    url = "/v1/listings/prop_seed1"

    r = await client.patch(url, json={"price": 1}, headers=owner_headers("someone-else"))
    assert r.status_code == 403

    r = await client.patch(url, json={"status": "ACTIVE"}, headers=owner_headers())
    assert r.status_code == 403

    r = await client.patch(url, json={"price": -5, "zipCode": "nope"}, headers=owner_headers())
    assert r.status_code == 422
    assert r.json()["detail"]["errors"] == ["Price must be greater than 0", "Invalid zip code format"]

    r = await client.patch(url, json={"images": ["x"]}, headers=owner_headers())
    assert r.status_code == 422

    r = await client.patch(url, json={"status": "REJECTED"}, headers=admin_headers())
    assert r.status_code == 200
    assert r.json()["status"] == "REJECTED"
    # visibility follows a rejection whichever path sets it
    assert r.json()["isPublic"] is False


@pytest.mark.asyncio
async def test_delete_removes_record_and_media(client, db_session, services):
    key = "users/usr_owner1/listings/prop_seed1/image-1.jpg"
    services.store.put_bytes(key=key, data=IMAGE_BYTES, content_type="image/jpeg")
    await seed_listing(db_session, images=[key])

    r = await client.delete("/v1/listings/prop_seed1", headers=owner_headers("someone-else"))
    assert r.status_code == 403

    r = await client.delete("/v1/listings/prop_seed1", headers=owner_headers())
    assert r.status_code == 200
    assert r.json() == {"message": "Property deleted successfully"}

    assert not services.store.exists(key)
    assert (await client.get("/v1/listings/prop_seed1", headers=admin_headers())).status_code == 404

    r = await client.get("/v1/listings/prop_seed1/history", headers=admin_headers())
    assert r.status_code == 200
    [entry] = r.json()
    assert entry["action"] == "listing.deleted"
    assert entry["fromStatus"] == "PENDING_REVIEW"
    assert entry["toStatus"] is None
    assert entry["detail"] == {"images": 1}

    assert (await client.get("/v1/listings/prop_seed1/history", headers=owner_headers())).status_code == 403


@pytest.mark.asyncio
async def test_browse_lists_only_active_public_listings(client, db_session):
    await seed_listing(db_session, listing_id="prop_a", price=300000)
    await seed_listing(db_session, listing_id="prop_b", price=700000)
    await seed_listing(db_session, listing_id="prop_c", city="Dallas")
    for listing_id in ("prop_a", "prop_b", "prop_c"):
        await client.post(f"/v1/listings/{listing_id}/approve", headers=admin_headers())
    await seed_listing(db_session, listing_id="prop_pending")

    r = await client.get("/v1/listings")
    assert sorted(x["id"] for x in r.json()) == ["prop_a", "prop_b", "prop_c"]

    r = await client.get("/v1/listings", params={"state": "TX", "city": "Austin", "maxPrice": 500000})
    assert [x["id"] for x in r.json()] == ["prop_a"]

    r = await client.get("/v1/listings", params={"listingType": "FOR_SALE", "minPrice": 500000})
    assert [x["id"] for x in r.json()] == ["prop_b"]

    r = await client.get("/v1/listings/pending", headers=admin_headers())
    assert [x["id"] for x in r.json()] == ["prop_pending"]

    r = await client.get("/v1/listings/pending", headers=owner_headers())
    assert r.status_code == 403

    r = await client.get("/v1/listings/mine", headers=owner_headers())
    assert len(r.json()) == 4


async def test_admin_status_patch_moves_the_status_access_path(client, db_session):
    await seed_listing(db_session)

    r = await client.patch("/v1/listings/prop_seed1", json={"status": "REJECTED"}, headers=admin_headers())
    assert r.status_code == 200, r.text
    assert r.json()["isPublic"] is False

    listing = (
        await db_session.execute(
            select(Listing).where(Listing.id == "prop_seed1").execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert listing.status_key == "STATUS#REJECTED"
    assert listing.status_sort == f"SUBMITTED#{iso_utc(listing.submitted_at)}"
    assert listing.is_public is False

    r = await client.get("/v1/listings/pending", headers=admin_headers())
    assert [row["id"] for row in r.json()] == []


async def test_browse_filters_are_not_limited_to_the_newest_page(client, db_session):
    data = validate_listing(listing_input(propertyType="CONDO", price=900000)).normalized
    for i in range(MAX_PAGE_SIZE + 5):
        listing = await create_listing(db_session, listing_id=f"prop_new{i}", data=data, images=["x.jpg"], submitted_by=None)
        mark_approved(listing, actor_id="sub-admin-1")
    cheap = await create_listing(
        db_session,
        listing_id="prop_old_cheap",
        data={**data, "price": 250000},
        images=["x.jpg"],
        submitted_by=None,
    )
    mark_approved(cheap, actor_id="sub-admin-1")
    cheap.submitted_at = utcnow() - timedelta(days=30)
    await db_session.commit()

    r = await client.get("/v1/listings", params={"propertyType": "CONDO", "maxPrice": 300000})
    assert [x["id"] for x in r.json()] == ["prop_old_cheap"]

    r = await client.get("/v1/listings", params={"maxPrice": 300000})
    assert [x["id"] for x in r.json()] == ["prop_old_cheap"]
