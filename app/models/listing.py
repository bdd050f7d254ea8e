from datetime import datetime

from sqlalchemy import Boolean, Float, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.models.base import Base, JSONType, iso_utc, utcnow


STATUS_PENDING_REVIEW = "PENDING_REVIEW"
STATUS_ACTIVE = "ACTIVE"
STATUS_REJECTED = "REJECTED"
LISTING_STATUSES = (STATUS_PENDING_REVIEW, STATUS_ACTIVE, STATUS_REJECTED)


def pad_price(price: float) -> str:
    # Fixed width so lexical order matches numeric order
    return f"{float(price):016.2f}"


class Listing(Base):
    __tablename__ = "properties"
    __table_args__ = (
        Index("ix_properties_by_status", "status_key", "status_sort"),
        Index("ix_properties_by_location", "location_key", "location_sort"),
        Index("ix_properties_by_type", "type_key", "type_sort"),
        Index("ix_properties_by_listing_type", "listing_key", "listing_sort"),
        Index("ix_properties_by_owner", "owner_key", "owner_sort"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str] = mapped_column(String(300), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state: Mapped[str] = mapped_column(String(120), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(20), nullable=False)
    bedrooms: Mapped[float] = mapped_column(Float, nullable=False)
    bathrooms: Mapped[float] = mapped_column(Float, nullable=False)
    square_feet: Mapped[float] = mapped_column(Float, nullable=False)
    property_type: Mapped[str] = mapped_column(String(40), nullable=False)
    listing_type: Mapped[str] = mapped_column(String(40), nullable=False)

    images: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    contact_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(60), nullable=False)

    amenities: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lot_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    parking_spaces: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # "PENDING_REVIEW" | "ACTIVE" | "REJECTED"
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=STATUS_PENDING_REVIEW)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # external identity of the submitter; None for anonymous submissions
    submitted_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Secondary access paths (derived, never written directly)
    status_key: Mapped[str] = mapped_column(String(80), nullable=False)
    status_sort: Mapped[str] = mapped_column(String(80), nullable=False)
    location_key: Mapped[str] = mapped_column(String(300), nullable=False)
    location_sort: Mapped[str] = mapped_column(String(80), nullable=False)
    type_key: Mapped[str] = mapped_column(String(80), nullable=False)
    type_sort: Mapped[str] = mapped_column(String(80), nullable=False)
    listing_key: Mapped[str] = mapped_column(String(80), nullable=False)
    listing_sort: Mapped[str] = mapped_column(String(80), nullable=False)
    owner_key: Mapped[str | None] = mapped_column(String(250), nullable=True)
    owner_sort: Mapped[str | None] = mapped_column(String(80), nullable=True)

    def refresh_access_keys(self) -> None:
        # column defaults only apply at INSERT time, after this runs
        if self.submitted_at is None:
            self.submitted_at = utcnow()
        if self.status is None:
            self.status = STATUS_PENDING_REVIEW
        if self.is_public is None:
            self.is_public = True
        if self.status == STATUS_REJECTED:
            self.is_public = False

        submitted = f"SUBMITTED#{iso_utc(self.submitted_at)}"
        price = f"PRICE#{pad_price(self.price)}"

        self.status_key = f"STATUS#{self.status}"
        self.status_sort = submitted
        self.location_key = f"LOCATION#{self.state}#{self.city}"
        self.location_sort = price
        self.type_key = f"TYPE#{self.property_type}"
        self.type_sort = submitted
        self.listing_key = f"LISTING#{self.listing_type}"
        self.listing_sort = price
        if self.submitted_by:
            self.owner_key = f"USER#{self.submitted_by}"
            self.owner_sort = submitted
        else:
            self.owner_key = None
            self.owner_sort = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "squareFeet": self.square_feet,
            "propertyType": self.property_type,
            "listingType": self.listing_type,
            "images": list(self.images or []),
            "contactName": self.contact_name,
            "contactEmail": self.contact_email,
            "contactPhone": self.contact_phone,
            "amenities": list(self.amenities or []),
            "yearBuilt": self.year_built,
            "lotSize": self.lot_size,
            "parkingSpaces": self.parking_spaces,
            "status": self.status,
            "isPublic": self.is_public,
            "submittedBy": self.submitted_by,
            "submittedAt": iso_utc(self.submitted_at),
            "updatedAt": iso_utc(self.updated_at),
            "approvedAt": iso_utc(self.approved_at) if self.approved_at else None,
            "approvedBy": self.approved_by,
            "rejectedAt": iso_utc(self.rejected_at) if self.rejected_at else None,
            "rejectedBy": self.rejected_by,
            "rejectionReason": self.rejection_reason,
        }


@event.listens_for(Listing, "before_insert")
@event.listens_for(Listing, "before_update")
def _keep_access_keys_consistent(mapper, connection, target: Listing) -> None:
    target.refresh_access_keys()
