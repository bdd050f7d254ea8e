from __future__ import annotations

import logging
from typing import Any

from app.core.config import settings
from app.notifications.dispatcher import listing_fields, notify
from app.notifications.templates import NotificationEvent
from app.services.accounts import find_by_external_id
from app.services.listing_store import create_listing
from app.services.listing_validation import validate_listing
from app.services.media import MediaRelocationError, listing_folder, relocate_images
from app.workflows.engine import Parallel, Stage, StageContext, StageRejected, TransientStageError, WorkflowDefinition


log = logging.getLogger(__name__)

WORKFLOW_NAME = "listing_submission"


def submitter_of(data: dict[str, Any]) -> str | None:
    # identity-provider subject wins over a client supplied user id
    return data.get("cognitoUserId") or data.get("userId")


async def validate(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    result = validate_listing(data.get("input") or {})
    if not result.valid:
        raise StageRejected("ValidationFailed", errors=result.errors)
    return {"propertyData": result.normalized, "validation": {"valid": True}}


async def resolve_owner_account(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    external_id = data.get("cognitoUserId")
    account = await find_by_external_id(ctx.db, external_id) if external_id else None
    return {"ownerAccountId": account.id if account else None}


async def prepare_listing_folder(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    owner = data.get("userId") or data.get("cognitoUserId") or "anonymous"
    folder = ctx.services.store.make_folder(listing_folder(owner, data["propertyId"]))
    return {"mediaFolder": folder}


async def move_media(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    try:
        moved = await relocate_images(
            store=ctx.services.store,
            http=ctx.services.http,
            sources=data["propertyData"]["images"],
            folder=data["mediaFolder"],
            max_bytes=settings.media_max_bytes,
            timeout_seconds=settings.media_fetch_timeout_seconds,
        )
    except MediaRelocationError as e:
        if e.retryable:
            raise TransientStageError(str(e)) from e
        raise
    return {"images": moved.images, "imageFailures": [source for source, _ in moved.failures]}


async def store_listing(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    listing = await create_listing(
        ctx.db,
        listing_id=data["propertyId"],
        data=data["propertyData"],
        images=data["images"],
        submitted_by=submitter_of(data),
    )
    return {"listing": listing.to_dict()}


async def notify_submitter(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    listing = data["listing"]
    sent = await notify(
        ctx.db,
        ctx.services.email,
        NotificationEvent.SUBMITTED_PENDING,
        external_id=data.get("cognitoUserId"),
        fallback_email=listing.get("contactEmail"),
        fallback_name=listing.get("contactName"),
        fields=listing_fields(listing),
    )
    return {"notificationSent": sent}


LISTING_SUBMISSION = WorkflowDefinition(
    name=WORKFLOW_NAME,
    initial_state="SUBMITTED",
    stages=(
        Stage("validate", "VALIDATING", validate),
        Parallel(
            "provision",
            "PROVISIONING",
            branches=(
                Stage("resolve_owner_account", "PROVISIONING", resolve_owner_account),
                Stage("prepare_listing_folder", "PROVISIONING", prepare_listing_folder),
            ),
        ),
        Stage("relocate_media", "RELOCATING_MEDIA", move_media),
        Stage("store", "STORING", store_listing),
        Stage("notify", "NOTIFYING", notify_submitter),
    ),
)
