from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.notifications.email import EmailMessage, EmailSender
from app.notifications.templates import NotificationEvent, render
from app.services.accounts import find_by_external_id


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str


async def resolve_recipient(
    db: AsyncSession,
    *,
    external_id: str | None,
    fallback_email: str | None = None,
    fallback_name: str | None = None,
) -> Recipient | None:
    """
    Prefer the registered account of an authenticated submitter; otherwise
    the contact details they typed in. None when neither has an email.
    """
    if external_id:
        try:
            account = await find_by_external_id(db, external_id)
        except SQLAlchemyError:
            log.exception("notify: account lookup failed external_id=%s", external_id)
            account = None
        if account and account.email:
            return Recipient(email=account.email, name=account.display_name)

    if fallback_email:
        return Recipient(email=fallback_email, name=fallback_name or fallback_email)
    return None


async def dispatch_notification(
    sender: EmailSender,
    event: NotificationEvent,
    recipient: Recipient | None,
    fields: Mapping[str, Any],
) -> bool:
    """Render and send one notification. Failures are logged and reported as False."""
    if recipient is None:
        log.warning("notify: no recipient for %s", event.value)
        return False

    try:
        rendered = render(event, {"name": recipient.name, **fields})
        await sender.send(
            EmailMessage(
                to_email=recipient.email,
                to_name=recipient.name,
                subject=rendered.subject,
                html=rendered.html,
                text=rendered.text,
            )
        )
    except Exception:
        log.exception("notify: %s to %s failed", event.value, recipient.email)
        return False

    return True


async def notify(
    db: AsyncSession,
    sender: EmailSender,
    event: NotificationEvent,
    *,
    external_id: str | None,
    fallback_email: str | None = None,
    fallback_name: str | None = None,
    fields: Mapping[str, Any],
) -> bool:
    recipient = await resolve_recipient(
        db,
        external_id=external_id,
        fallback_email=fallback_email,
        fallback_name=fallback_name,
    )
    return await dispatch_notification(sender, event, recipient, fields)


def listing_fields(listing: Mapping[str, Any]) -> dict[str, Any]:
    """Template fields for a listing dict (camelCase, as stored or submitted)."""
    return {
        "title": listing.get("title"),
        "address": listing.get("address"),
        "city": listing.get("city"),
        "state": listing.get("state"),
        "zip_code": listing.get("zipCode"),
        "price": listing.get("price"),
        "property_type": listing.get("propertyType"),
        "listing_type": listing.get("listingType"),
    }
