from typing import Any

from pydantic import ConfigDict, Field

from app.schemas.common import CamelModel


class ListingSubmission(CamelModel):
    """
    Raw submission. Fields are deliberately loose: the submission workflow
    validates them and reports every violation at once.
    """
    model_config = ConfigDict(extra="allow")

    title: Any = None
    description: Any = None
    price: Any = None
    address: Any = None
    city: Any = None
    state: Any = None
    zip_code: Any = None
    bedrooms: Any = None
    bathrooms: Any = None
    square_feet: Any = None
    property_type: Any = None
    listing_type: Any = None
    images: Any = None
    contact_name: Any = None
    contact_email: Any = None
    contact_phone: Any = None
    amenities: Any = None
    year_built: Any = None
    lot_size: Any = None
    parking_spaces: Any = None


class ListingSubmitted(CamelModel):
    property_id: str
    execution_name: str
    message: str


class ListingUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    price: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    bedrooms: float | None = None
    bathrooms: float | None = None
    square_feet: float | None = None
    property_type: str | None = None
    listing_type: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    amenities: list[str] | None = None
    year_built: int | None = None
    lot_size: float | None = None
    parking_spaces: int | None = None
    status: str | None = None


class RejectRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)


class ListingOut(CamelModel):
    id: str
    title: str
    description: str
    price: float
    address: str
    city: str
    state: str
    zip_code: str
    bedrooms: float
    bathrooms: float
    square_feet: float
    property_type: str
    listing_type: str
    images: list[str]
    contact_name: str
    contact_email: str
    contact_phone: str
    amenities: list[str]
    year_built: int | None = None
    lot_size: float | None = None
    parking_spaces: int | None = None
    status: str
    is_public: bool
    submitted_by: str | None = None
    submitted_at: str
    updated_at: str
    approved_at: str | None = None
    approved_by: str | None = None
    rejected_at: str | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None


class ListingAuditOut(CamelModel):
    action: str
    actor_id: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    detail: dict[str, Any]
    created_at: str
