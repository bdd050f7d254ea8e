from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping


REQUIRED_FIELDS = (
    "title", "description", "price", "address", "city", "state",
    "zipCode", "bedrooms", "bathrooms", "squareFeet", "propertyType",
    "listingType", "contactName", "contactEmail", "contactPhone",
)

PROPERTY_TYPES = (
    "SINGLE_FAMILY", "CONDO", "TOWNHOUSE", "MULTI_FAMILY",
    "LAND", "COMMERCIAL", "OTHER",
)
LISTING_TYPES = ("FOR_SALE", "FOR_RENT", "SOLD", "RENTED")

MAX_IMAGES = 20
YEAR_BUILT_FLOOR = 1800

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]+$")
_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")

# field -> (label, strictly positive)
_NUMERIC_RULES = {
    "price": ("Price", True),
    "bedrooms": ("Bedrooms", False),
    "bathrooms": ("Bathrooms", False),
    "squareFeet": ("Square feet", True),
}


@dataclass(frozen=True)
class ListingValidationResult:
    valid: bool
    normalized: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        if self.valid:
            return {"valid": True, "normalized": self.normalized}
        return {"valid": False, "errors": list(self.errors)}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    # nan and inf parse as floats but are never a real quantity
    return number if math.isfinite(number) else None


def _as_int(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def validate_listing(raw: Mapping[str, Any], *, today: date | None = None) -> ListingValidationResult:
    """
    Check a submitted listing against the structural and domain rules.

    Every rule is evaluated independently so all violations come back in
    one pass. Bad business data never raises; only a payload that is not a
    mapping at all does.
    """
    if not isinstance(raw, Mapping):
        raise TypeError(f"listing payload must be a mapping, got {type(raw).__name__}")

    today = today or date.today()
    errors: list[str] = []

    for name in REQUIRED_FIELDS:
        if _is_missing(raw.get(name)):
            errors.append(f"Missing required field: {name}")

    email = raw.get("contactEmail")
    if not _is_missing(email) and not (isinstance(email, str) and _EMAIL_RE.match(email.strip())):
        errors.append("Invalid email format")

    phone = raw.get("contactPhone")
    if not _is_missing(phone) and not (isinstance(phone, str) and _PHONE_RE.match(phone)):
        errors.append("Invalid phone format")

    numbers: dict[str, float] = {}
    for name, (label, strictly_positive) in _NUMERIC_RULES.items():
        value = raw.get(name)
        if _is_missing(value):
            continue
        number = _as_number(value)
        if number is None:
            errors.append(f"{label} must be a number")
            continue
        numbers[name] = number
        if strictly_positive and number <= 0:
            errors.append(f"{label} must be greater than 0")
        elif not strictly_positive and number < 0:
            errors.append(f"{label} must be 0 or greater")

    images = raw.get("images")
    if not isinstance(images, list) or len(images) == 0:
        errors.append("At least one image is required")
    elif len(images) > MAX_IMAGES:
        errors.append(f"At most {MAX_IMAGES} images are allowed")
    elif not all(isinstance(i, str) and i.strip() for i in images):
        errors.append("Image references must be non-empty strings")

    property_type = raw.get("propertyType")
    if not _is_missing(property_type) and property_type not in PROPERTY_TYPES:
        errors.append(f"Invalid property type. Must be one of: {', '.join(PROPERTY_TYPES)}")

    listing_type = raw.get("listingType")
    if not _is_missing(listing_type) and listing_type not in LISTING_TYPES:
        errors.append(f"Invalid listing type. Must be one of: {', '.join(LISTING_TYPES)}")

    optional: dict[str, float] = {}
    year_built = raw.get("yearBuilt")
    if year_built is not None:
        year = _as_number(year_built)
        if year is None or not year.is_integer() or year < YEAR_BUILT_FLOOR or year > today.year + 1:
            errors.append(f"Year built must be between {YEAR_BUILT_FLOOR} and next year")
        else:
            optional["yearBuilt"] = year

    zip_code = raw.get("zipCode")
    if not _is_missing(zip_code) and not (isinstance(zip_code, str) and _ZIP_RE.match(zip_code.strip())):
        errors.append("Invalid zip code format")

    parking = raw.get("parkingSpaces")
    if parking is not None:
        spaces = _as_number(parking)
        if spaces is None or not spaces.is_integer() or spaces < 0:
            errors.append("Parking spaces must be a whole number, 0 or greater")
        else:
            optional["parkingSpaces"] = spaces

    lot_size = raw.get("lotSize")
    if lot_size is not None:
        size = _as_number(lot_size)
        if size is None or size <= 0:
            errors.append("Lot size must be greater than 0")
        else:
            optional["lotSize"] = size

    amenities = raw.get("amenities")
    if amenities is not None and not (isinstance(amenities, list) and all(isinstance(a, str) for a in amenities)):
        errors.append("Amenities must be a list of strings")

    if errors:
        return ListingValidationResult(valid=False, errors=errors)

    normalized: dict[str, Any] = {}
    for name in REQUIRED_FIELDS:
        value = raw[name]
        normalized[name] = value.strip() if isinstance(value, str) else value
    for name, number in numbers.items():
        normalized[name] = _as_int(number)
    normalized["images"] = [i.strip() for i in images]
    normalized["amenities"] = [a.strip() for a in (amenities or []) if a.strip()]
    for name in ("yearBuilt", "parkingSpaces"):
        if name in optional:
            normalized[name] = int(optional[name])
    if "lotSize" in optional:
        normalized["lotSize"] = optional["lotSize"]
    for name in ("userId", "cognitoUserId"):
        if not _is_missing(raw.get(name)):
            normalized[name] = raw[name]

    return ListingValidationResult(valid=True, normalized=normalized)
