from __future__ import annotations

from typing import Any

from app.notifications.dispatcher import Recipient, dispatch_notification
from app.notifications.templates import NotificationEvent
from app.services.accounts import get_account, set_tier
from app.workflows.engine import Stage, StageContext, StageRejected, WorkflowDefinition


WORKFLOW_NAME = "tier_upgrade"


async def update_tier(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    account = await get_account(ctx.db, data["userId"])
    if account is None:
        raise StageRejected("UserNotFound", errors=[f"Unknown user: {data['userId']}"])
    previous = await set_tier(ctx.db, account, data["tier"], updated_by=data.get("requestedBy"))
    return {"previousTier": previous, "email": account.email, "name": account.display_name}


async def send_upgrade_email(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    sent = await dispatch_notification(
        ctx.services.email,
        NotificationEvent.TIER_UPGRADED,
        Recipient(email=data["email"], name=data["name"]),
        {},
    )
    return {"emailSent": sent}


TIER_UPGRADE = WorkflowDefinition(
    name=WORKFLOW_NAME,
    initial_state="REQUESTED",
    stages=(
        Stage("update_tier", "UPDATING_TIER", update_tier),
        Stage("notify", "NOTIFYING", send_upgrade_email),
    ),
)
