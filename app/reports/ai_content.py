from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from app.services.http_client import HubHttpClient


log = logging.getLogger(__name__)

REPORT_TYPES = (
    "MARKET_ANALYSIS",
    "INVESTMENT_ANALYSIS",
    "COMPARATIVE_MARKET_ANALYSIS",
    "LISTING_OPTIMIZATION",
    "CUSTOM",
)

_BASE_PROMPT = """You are a professional real estate analyst with expertise in location analysis. Generate a comprehensive {report_name} report for the following property:

Property Title: {title}
Description: {description}
Price: ${price}
Address: {address}, {city}, {state} {zip_code}
Property Type: {property_type}
Listing Type: {listing_type}
Bedrooms: {bedrooms}
Bathrooms: {bathrooms}
Square Feet: {square_feet}
{extras}
Additional Context: {additional_context}

IMPORTANT: Include analysis of nearby amenities and infrastructure based on the property location ({city}, {state}). Consider typical amenities found in this area and provide realistic estimates of distances and quality ratings.
"""

_DETAILED_AMENITIES = """
DETAILED AMENITIES REQUIRED: Provide comprehensive analysis of:
- SCHOOLS: List specific schools within 2-5 miles with estimated ratings (Elementary, Middle, High Schools)
- HOSPITALS: Major medical centers and hospitals within 10 miles with specialties
- AIRPORTS: Nearest airports with drive times and whether they're international/regional
- TRANSIT: Train stations, subway stops, major bus routes within walking distance
- SHOPPING: Major shopping centers, grocery stores, pharmacies within 2 miles
- DINING: Restaurant density and types within 1 mile
- RECREATION: Parks, gyms, entertainment venues within 3 miles
Include specific names where typical for the area and realistic distance estimates.
"""

_INSTRUCTIONS = {
    "MARKET_ANALYSIS": """
Create a detailed market analysis report that includes:
1. Executive Summary (2-3 sentences)
2. Local Market Overview
3. Comparable Properties Analysis
4. Price Positioning Assessment
5. Market Trends and Forecast
6. Neighborhood Amenities Analysis:
   - Schools (Elementary, Middle, High Schools with ratings)
   - Healthcare Facilities (Hospitals, Urgent Care, Medical Centers)
   - Transportation (Airports, Train Stations, Bus Routes)
   - Shopping & Dining (Grocery Stores, Restaurants, Shopping Centers)
   - Recreation (Parks, Gyms, Entertainment)
7. Recommendations for Pricing Strategy

Format the response with clear sections and bullet points. Include estimated distances and quality ratings where applicable.""",
    "INVESTMENT_ANALYSIS": """
Create a comprehensive investment analysis report that includes:
1. Executive Summary (2-3 sentences)
2. ROI Projections
3. Cash Flow Analysis
4. Risk Assessment
5. Market Growth Potential
6. Location Value Drivers:
   - Top-Rated Schools (impact on property values)
   - Major Employers & Business Centers (within 10 miles)
   - Healthcare Infrastructure (hospitals, medical facilities)
   - Transportation Access (airports, highways, public transit)
   - Future Development Plans
7. Investment Recommendations

Include specific metrics, financial projections, and how nearby amenities affect investment potential.""",
    "COMPARATIVE_MARKET_ANALYSIS": """
Create a detailed comparative market analysis (CMA) that includes:
1. Executive Summary (2-3 sentences)
2. Subject Property Analysis
3. Comparable Properties (suggest 3-5 similar properties)
4. Market Adjustments
5. Location Premium Analysis:
   - School District Quality & Rankings
   - Distance to Major Hospitals & Medical Centers
   - Airport Accessibility (drive time to nearest airports)
   - Public Transit Options (subway, bus, train stations)
   - Walkability Score & Nearby Amenities
6. Final Value Opinion
7. Marketing Recommendations

Provide specific price ranges, adjustment factors, and how location amenities impact property value.""",
    "LISTING_OPTIMIZATION": """
Create a listing optimization report that includes:
1. Executive Summary (2-3 sentences)
2. Listing Strengths and Weaknesses
3. Pricing Recommendations
4. Key Selling Points - Location Advantages:
   - Highlight Nearby Top-Rated Schools
   - Proximity to Healthcare Facilities
   - Transportation Convenience (airports, stations)
   - Lifestyle Amenities (shopping, dining, entertainment)
   - Safety & Community Features
5. Marketing Strategy Suggestions
6. Staging and Presentation Tips
7. Target Buyer Profile

Focus on actionable recommendations and how to leverage nearby amenities in marketing.""",
    "CUSTOM": """
Create a comprehensive property analysis report that includes:
1. Executive Summary (2-3 sentences)
2. Property Overview
3. Market Context
4. Neighborhood Analysis:
   - Educational Facilities (schools, colleges, libraries)
   - Healthcare Access (hospitals, clinics, emergency services)
   - Transportation Infrastructure (airports, train/bus stations, highways)
   - Essential Services (grocery, pharmacy, banking)
   - Quality of Life Factors (parks, recreation, safety)
5. Value Assessment
6. Opportunities and Challenges
7. Strategic Recommendations

Provide a balanced analysis with emphasis on location advantages and nearby amenities.""",
}

# Heuristic: models are asked for numbered sections; a section runs to the
# next blank line or numbered heading.
_SECTION_PATTERNS = {
    "executive_summary": re.compile(
        r"executive summary[:\s]*(.*?)(?=\n\s*\n|\n\s*\d+\.\s|\Z)", re.IGNORECASE | re.DOTALL
    ),
    "market_insights": re.compile(
        r"(?:market|trends?|neighborhood|amenities|location)[^\n:]*[:\n]\s*(.*?)(?=\n\s*\n|\n\s*\d+\.\s|recommendations|\Z)",
        re.IGNORECASE | re.DOTALL,
    ),
    "recommendations": re.compile(
        r"recommendations?[^\n:]*[:\n]\s*(.*?)(?=\n\s*\n\s*\d+\.\s|\Z)", re.IGNORECASE | re.DOTALL
    ),
}


class AIContentError(Exception):
    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass(frozen=True)
class GeneratedText:
    content: str
    model: str


class ContentGenerator(Protocol):
    async def generate(self, prompt: str) -> GeneratedText: ...


def _number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:,}"
    return str(value)


def build_prompt(snapshot: Mapping[str, Any]) -> str:
    """Prompt for one report: property facts, then report-type instructions."""
    report_type = str(snapshot.get("reportType") or "CUSTOM")

    extras = []
    if snapshot.get("yearBuilt"):
        extras.append(f"Year Built: {snapshot['yearBuilt']}")
    if snapshot.get("lotSize"):
        extras.append(f"Lot Size: {snapshot['lotSize']} acres")
    if snapshot.get("amenities"):
        extras.append(f"Amenities: {', '.join(str(a) for a in snapshot['amenities'])}")

    prompt = _BASE_PROMPT.format(
        report_name=report_type.replace("_", " "),
        title=snapshot.get("title", ""),
        description=snapshot.get("description", ""),
        price=_number(snapshot.get("price", 0)),
        address=snapshot.get("address", ""),
        city=snapshot.get("city", ""),
        state=snapshot.get("state", ""),
        zip_code=snapshot.get("zipCode", ""),
        property_type=str(snapshot.get("propertyType", "")).replace("_", " "),
        listing_type="For Sale" if snapshot.get("listingType") == "FOR_SALE" else "For Rent",
        bedrooms=snapshot.get("bedrooms", ""),
        bathrooms=snapshot.get("bathrooms", ""),
        square_feet=_number(snapshot.get("squareFeet", 0)),
        extras="\n".join(extras),
        additional_context=snapshot.get("additionalContext") or "None provided",
    )
    if snapshot.get("includeDetailedAmenities"):
        prompt += _DETAILED_AMENITIES

    return prompt + _INSTRUCTIONS.get(report_type, _INSTRUCTIONS["CUSTOM"])


def extract_sections(content: str) -> dict[str, str | None]:
    """Pull named sections out of free text; an absent section is None."""
    sections: dict[str, str | None] = {}
    for name, pattern in _SECTION_PATTERNS.items():
        match = pattern.search(content)
        text = match.group(1).strip() if match else ""
        sections[name] = text or None
    return sections


class OpenAIContentGenerator:
    """Chat-completions client over the shared HubHttpClient."""

    def __init__(
        self,
        *,
        http: HubHttpClient,
        api_url: str,
        api_key: str | None,
        model: str,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        top_p: float = 0.9,
        timeout_seconds: float = 60.0,
    ):
        self._http = http
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._top_p = top_p
        self._timeout = timeout_seconds

    async def generate(self, prompt: str) -> GeneratedText:
        if not self._api_key:
            raise AIContentError("AI provider not configured")

        result = await self._http.post_json(
            url=self._api_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json_body={
                "model": self._model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": self._max_tokens,
                "temperature": self._temperature,
                "top_p": self._top_p,
            },
            timeout_seconds=self._timeout,
        )
        if not result.ok:
            log.warning("ai: completion failed code=%s retryable=%s", result.error_code, result.retryable)
            raise AIContentError(f"AI provider error: {result.error_code}", retryable=result.retryable)

        try:
            content = result.detail["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIContentError("AI provider returned an unexpected payload") from e

        return GeneratedText(content=content or "No content generated", model=result.detail.get("model") or self._model)


async def synthesize_report_content(generator: ContentGenerator, snapshot: Mapping[str, Any]) -> dict[str, Any]:
    started = time.monotonic()
    generated = await generator.generate(build_prompt(snapshot))
    sections = extract_sections(generated.content)
    return {
        "content": generated.content,
        "executiveSummary": sections["executive_summary"],
        "marketInsights": sections["market_insights"],
        "recommendations": sections["recommendations"],
        "generationTimeMs": int((time.monotonic() - started) * 1000),
        "modelUsed": generated.model,
    }
