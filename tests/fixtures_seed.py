from sqlalchemy.ext.asyncio import AsyncSession

from app.models.listing import Listing
from app.models.user_account import UserAccount
from app.services.listing_store import create_listing
from app.services.listing_validation import validate_listing


SAMPLE_REPORT = """Executive Summary: The property is priced in line with the local market.

2. Market Trends: Demand in Austin has been steady over the last year.

3. Recommendations: List in spring and highlight the renovated kitchen.
"""

IMAGE_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"

OWNER_SUB = "sub-owner-1"
ADMIN_SUB = "sub-admin-1"


def owner_headers(sub: str = OWNER_SUB) -> dict:
    return {"X-Identity-Sub": sub}


def admin_headers(sub: str = ADMIN_SUB) -> dict:
    return {"X-Identity-Sub": sub, "X-Identity-Groups": "admin"}


def listing_input(**overrides) -> dict:
    data = {
        "title": "Sunny 3BR Bungalow",
        "description": "Renovated kitchen, large backyard.",
        "price": 425000,
        "address": "12 Oak Street",
        "city": "Austin",
        "state": "TX",
        "zipCode": "78701",
        "bedrooms": 3,
        "bathrooms": 2,
        "squareFeet": 1850,
        "propertyType": "SINGLE_FAMILY",
        "listingType": "FOR_SALE",
        "images": ["https://img.example.com/front.jpg"],
        "contactName": "Sam Seller",
        "contactEmail": "sam@example.com",
        "contactPhone": "(512) 555-0199",
        "amenities": ["garage", "pool"],
        "yearBuilt": 1998,
    }
    data.update(overrides)
    return data


def report_input(**overrides) -> dict:
    data = {
        "title": "Sunny 3BR Bungalow",
        "description": "Renovated kitchen, large backyard.",
        "price": 425000,
        "address": "12 Oak Street",
        "city": "Austin",
        "state": "TX",
        "zipCode": "78701",
        "bedrooms": 3,
        "bathrooms": 2,
        "squareFeet": 1850,
        "propertyType": "SINGLE_FAMILY",
        "listingType": "FOR_SALE",
        "amenities": ["garage"],
        "reportType": "MARKET_ANALYSIS",
    }
    data.update(overrides)
    return data


async def seed_account(
    db: AsyncSession,
    *,
    account_id: str = "usr_owner1",
    external_id: str = OWNER_SUB,
    email: str = "owner@example.com",
    tier: str = "user",
) -> UserAccount:
    account = UserAccount(
        id=account_id,
        external_id=external_id,
        email=email,
        first_name="Olivia",
        last_name="Owner",
        contact_number="555-0100",
        tier=tier,
        created_by="test",
        updated_by="test",
    )
    db.add(account)
    await db.commit()
    return account


async def seed_listing(
    db: AsyncSession,
    *,
    listing_id: str = "prop_seed1",
    submitted_by: str | None = OWNER_SUB,
    images: list[str] | None = None,
    **overrides,
) -> Listing:
    normalized = validate_listing(listing_input(**overrides)).normalized
    listing = await create_listing(
        db,
        listing_id=listing_id,
        data=normalized,
        images=images if images is not None else [f"users/usr_owner1/listings/{listing_id}/image-1.jpg"],
        submitted_by=submitted_by,
    )
    await db.commit()
    return listing
