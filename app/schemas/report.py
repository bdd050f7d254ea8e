from typing import Literal

from pydantic import Field

from app.schemas.common import CamelModel


ReportType = Literal[
    "MARKET_ANALYSIS",
    "INVESTMENT_ANALYSIS",
    "COMPARATIVE_MARKET_ANALYSIS",
    "LISTING_OPTIMIZATION",
    "CUSTOM",
]


class ReportRequestIn(CamelModel):
    title: str = Field(min_length=1, max_length=300)
    description: str = ""
    price: float = Field(gt=0)
    address: str
    city: str
    state: str
    zip_code: str
    bedrooms: float = Field(ge=0)
    bathrooms: float = Field(ge=0)
    square_feet: float = Field(gt=0)
    property_type: str
    listing_type: str
    year_built: int | None = None
    lot_size: float | None = None
    amenities: list[str] = Field(default_factory=list)
    report_type: ReportType
    additional_context: str | None = Field(default=None, max_length=2000)
    include_detailed_amenities: bool = False


class ReportRequested(CamelModel):
    report_id: str
    execution_name: str
    message: str


class ReportOut(CamelModel):
    id: str
    report_type: str
    property_title: str | None = None
    requested_at: str
    generated_at: str | None = None
    executive_summary: str | None = None
    email_sent: bool
    failed: bool
    execution_name: str
