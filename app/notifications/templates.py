from __future__ import annotations

import html
from dataclasses import dataclass
from enum import Enum
from string import Template
from typing import Any, Mapping

from app.core.config import settings


class NotificationEvent(str, Enum):
    SUBMITTED_PENDING = "SUBMITTED_PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REPORT_READY = "REPORT_READY"
    TIER_UPGRADED = "TIER_UPGRADED"
    WELCOME = "WELCOME"


class TemplateFieldMissing(KeyError):
    pass


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    heading: str
    paragraphs: tuple[str, ...]
    # (label, value template) rows rendered as a details block
    details: tuple[tuple[str, str], ...] = ()
    fields: tuple[str, ...] = ()


_PROPERTY_DETAILS = (
    ("Title", "$title"),
    ("Address", "$address, $city, $state $zip_code"),
    ("Price", "$$$price"),
    ("Type", "$property_type"),
    ("Listing Type", "$listing_type"),
)
_PROPERTY_FIELDS = ("name", "title", "address", "city", "state", "zip_code", "price", "property_type", "listing_type")

TEMPLATES: dict[NotificationEvent, EmailTemplate] = {
    NotificationEvent.SUBMITTED_PENDING: EmailTemplate(
        subject="Property Listing Submitted - Pending Approval",
        heading="Thank you for submitting your property listing!",
        paragraphs=(
            "Dear $name,",
            "We have received your property listing for $title.",
            "Your listing is currently under review by our team. We will notify you once it has been approved and is live.",
            "The review process typically takes 1-2 business days.",
        ),
        details=_PROPERTY_DETAILS,
        fields=_PROPERTY_FIELDS,
    ),
    NotificationEvent.APPROVED: EmailTemplate(
        subject="Your Property Has Been Approved!",
        heading="Property Approved!",
        paragraphs=(
            "Dear $name,",
            "Great news! Your property listing has been approved and is now live on our platform.",
            "Your property is now visible to all users. You can view and manage your listing by logging into your account.",
        ),
        details=_PROPERTY_DETAILS,
        fields=_PROPERTY_FIELDS,
    ),
    NotificationEvent.REJECTED: EmailTemplate(
        subject="Property Listing Review Update",
        heading="Property Review Update",
        paragraphs=(
            "Dear $name,",
            "Thank you for submitting your property listing. After careful review, your listing has not been approved at this time.",
            "Reason: $reason",
            "You can edit your property details and resubmit for approval.",
        ),
        details=_PROPERTY_DETAILS,
        fields=_PROPERTY_FIELDS + ("reason",),
    ),
    NotificationEvent.REPORT_READY: EmailTemplate(
        subject="Your $report_type_display Report is Ready - $title",
        heading="Your $report_type_display Report is Ready",
        paragraphs=(
            "Hello $name,",
            "Your AI-powered report for $title at $address is ready.",
            "Download it here: $download_url",
            "This link expires in one hour. You can request a fresh link from your reports page at any time.",
        ),
        details=(("Report ID", "$report_id"),),
        fields=("name", "report_type_display", "title", "address", "download_url", "report_id"),
    ),
    NotificationEvent.TIER_UPGRADED: EmailTemplate(
        subject="Welcome to $brand!",
        heading="Congratulations, $name!",
        paragraphs=(
            "You've successfully upgraded to $brand.",
            "As a Pro member you now have access to AI-powered property reports and market analysis.",
            "Log in to your account to explore the new features. They are available immediately.",
        ),
        fields=("name", "brand"),
    ),
    NotificationEvent.WELCOME: EmailTemplate(
        subject="Welcome to $brand",
        heading="Welcome, $name!",
        paragraphs=(
            "Your account is ready.",
            "You can now submit property listings and track their review status from your dashboard.",
        ),
        fields=("name", "brand"),
    ),
}


def report_type_display(report_type: str) -> str:
    # "MARKET_ANALYSIS" -> "Market Analysis"
    return " ".join(part.capitalize() for part in report_type.split("_"))


def _format_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value:,}"
    return "" if value is None else str(value)


def render(event: NotificationEvent, fields: Mapping[str, Any]) -> RenderedEmail:
    """
    Render one notification. Only the template's declared fields are
    interpolated; a missing one raises TemplateFieldMissing.
    """
    template = TEMPLATES[event]
    values = {"brand": settings.brand_name}
    values.update({k: _format_value(v) for k, v in fields.items()})

    missing = [f for f in template.fields if f not in values]
    if missing:
        raise TemplateFieldMissing(f"{event.value}: missing {', '.join(missing)}")

    plain = {f: values[f] for f in template.fields}
    escaped = {f: html.escape(values[f]) for f in template.fields}

    def sub(source: str, mapping: dict[str, str]) -> str:
        return Template(source).substitute(mapping)

    subject = sub(template.subject, plain)
    heading = sub(template.heading, plain)

    text_lines = [heading, ""]
    text_lines += [sub(p, plain) for p in template.paragraphs]
    if template.details:
        text_lines.append("")
        text_lines += [f"{label}: {sub(value, plain)}" for label, value in template.details]
    text_lines += ["", "Best regards,", f"The {settings.brand_name} Team"]

    html_parts = [
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">",
        f"<h2 style=\"color: #667eea;\">{sub(template.heading, escaped)}</h2>",
    ]
    html_parts += [f"<p>{sub(p, escaped)}</p>" for p in template.paragraphs]
    if template.details:
        html_parts.append("<div style=\"background: #f8f9fa; padding: 16px; border-radius: 6px;\">")
        html_parts += [
            f"<p><strong>{html.escape(label)}:</strong> {sub(value, escaped)}</p>"
            for label, value in template.details
        ]
        html_parts.append("</div>")
    html_parts.append(f"<p>Best regards,<br>The {html.escape(settings.brand_name)} Team</p>")
    html_parts.append("</div>")

    return RenderedEmail(subject=subject, html="\n".join(html_parts), text="\n".join(text_lines))
