from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.outbox import OutboxEvent
from app.notifications.dispatcher import listing_fields, notify
from app.notifications.templates import NotificationEvent
from app.services.handles import ServiceHandles
from app.workflows.engine import execution_name, start_execution
from app.workflows.registry import get_workflow


log = logging.getLogger(__name__)

# outbox event type -> (workflow, payload field holding the entity id)
WORKFLOW_TRIGGERS = {
    "listing.submitted": ("listing_submission", "propertyId"),
    "report.requested": ("report_generation", "reportId"),
    "user.registered": ("user_registration", "cognitoUserId"),
    "user.upgrade_requested": ("tier_upgrade", "userId"),
}

REVIEW_EVENTS = {
    "listing.approved": NotificationEvent.APPROVED,
    "listing.rejected": NotificationEvent.REJECTED,
}


class UnknownEventType(Exception):
    pass


async def find_queued_trigger(db: AsyncSession, name: str) -> OutboxEvent | None:
    """Outbox trigger not yet consumed for the execution it will start under `name`."""
    for event_type, (workflow_name, entity_field) in WORKFLOW_TRIGGERS.items():
        prefix = f"{workflow_name}-"
        if not name.startswith(prefix):
            continue
        # the timestamp suffix is alphanumeric only
        entity_id = name[len(prefix):].rsplit("-", 1)[0]
        stmt = select(OutboxEvent).where(
            OutboxEvent.event_type == event_type,
            OutboxEvent.aggregate_id == entity_id,
            OutboxEvent.status.in_(("pending", "processing")),
        )
        for event in (await db.execute(stmt)).scalars():
            payload = event.payload or {}
            if execution_name(workflow_name, str(payload.get(entity_field)), str(payload.get("timestamp"))) == name:
                return event
    return None


async def handle_outbox_event(
    db: AsyncSession,
    services: ServiceHandles,
    *,
    event_type: str,
    payload: dict[str, Any],
) -> str | None:
    """
    Apply one ingress message. Workflow triggers start (or find) their
    execution and return its id; review events send their notification.
    """
    trigger = WORKFLOW_TRIGGERS.get(event_type)
    if trigger is not None:
        workflow_name, entity_field = trigger
        execution, created = await start_execution(
            db,
            get_workflow(workflow_name),
            entity_id=str(payload[entity_field]),
            payload=payload,
            timestamp=str(payload["timestamp"]),
        )
        if not created:
            log.info("ingress: %s redelivered, execution %s already exists", event_type, execution.name)
        return execution.id

    review_event = REVIEW_EVENTS.get(event_type)
    if review_event is not None:
        listing = payload["listing"]
        fields = listing_fields(listing)
        if review_event is NotificationEvent.REJECTED:
            fields["reason"] = payload.get("reason") or listing.get("rejectionReason") or ""
        await notify(
            db,
            services.email,
            review_event,
            external_id=listing.get("submittedBy"),
            fallback_email=listing.get("contactEmail"),
            fallback_name=listing.get("contactName"),
            fields=fields,
        )
        return None

    raise UnknownEventType(event_type)
