from __future__ import annotations

from typing import Any

from app.core.ids import gen_id
from app.notifications.dispatcher import Recipient, dispatch_notification
from app.notifications.templates import NotificationEvent
from app.services.accounts import create_account, find_by_external_id
from app.services.media import user_folder
from app.workflows.engine import Parallel, Stage, StageContext, WorkflowDefinition


WORKFLOW_NAME = "user_registration"


async def assign_id(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    existing = await find_by_external_id(ctx.db, data["cognitoUserId"])
    return {"userId": existing.id if existing else gen_id("usr")}


async def create_account_record(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    account, created = await create_account(
        ctx.db,
        account_id=data["userId"],
        external_id=data["cognitoUserId"],
        email=data["email"],
        first_name=data.get("firstName") or "",
        last_name=data.get("lastName") or "",
        contact_number=data.get("contactNumber") or "",
        created_by="registration",
    )
    return {"accountCreated": created, "userId": account.id}


async def create_storage_folder(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    return {"storageFolder": ctx.services.store.make_folder(user_folder(data["userId"]))}


async def send_welcome(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    name = f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip() or data["email"]
    sent = await dispatch_notification(
        ctx.services.email,
        NotificationEvent.WELCOME,
        Recipient(email=data["email"], name=name),
        {},
    )
    return {"emailSent": sent}


USER_REGISTRATION = WorkflowDefinition(
    name=WORKFLOW_NAME,
    initial_state="CONFIRMED",
    stages=(
        Stage("assign_id", "ASSIGNING_ID", assign_id),
        Parallel(
            "provision",
            "PROVISIONING",
            branches=(
                Stage("create_account_record", "PROVISIONING", create_account_record),
                Stage("create_storage_folder", "PROVISIONING", create_storage_folder),
            ),
        ),
        Stage("notify", "NOTIFYING", send_welcome),
    ),
)
