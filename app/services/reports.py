from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.identity import AuthenticatedIdentity, Identity
from app.models.base import iso_utc, utcnow
from app.models.report import ReportRequest
from app.services.accounts import find_by_external_id
from app.services.listings import enqueue_event
from app.workflows.engine import execution_name
from app.workflows.report_generation import WORKFLOW_NAME as REPORT_WORKFLOW


REQUESTED_MESSAGE = "Report generation started. You will receive an email when it is ready."


async def resolve_requester(db: AsyncSession, identity: Identity) -> tuple[str, str | None]:
    """(requester id, external id). Registered users are keyed by their internal id."""
    if not isinstance(identity, AuthenticatedIdentity):
        return "anonymous", None
    account = await find_by_external_id(db, identity.id)
    return (account.id if account else identity.id), identity.id


async def request_report(db: AsyncSession, *, identity: Identity, snapshot: dict[str, Any]) -> dict[str, Any]:
    report_id = str(uuid.uuid4())
    now = utcnow()
    timestamp = iso_utc(now)
    requester_id, external_id = await resolve_requester(db, identity)
    name = execution_name(REPORT_WORKFLOW, report_id, timestamp)

    db.add(ReportRequest(
        id=report_id,
        requester_id=requester_id,
        requester_external_id=external_id,
        property_snapshot=snapshot,
        report_type=snapshot["reportType"],
        requested_at=now,
        email_sent=False,
        execution_name=name,
    ))

    payload: dict[str, Any] = {
        "reportId": report_id,
        "userId": requester_id,
        "input": snapshot,
        "timestamp": timestamp,
    }
    if external_id:
        payload["cognitoUserId"] = external_id

    enqueue_event(
        db,
        event_type="report.requested",
        aggregate_type="report",
        aggregate_id=report_id,
        payload=payload,
        created_by=external_id,
    )
    await db.flush()
    return {"reportId": report_id, "executionName": name, "message": REQUESTED_MESSAGE}


async def find_report_by_execution(db: AsyncSession, name: str) -> ReportRequest | None:
    stmt = select(ReportRequest).where(ReportRequest.execution_name == name)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_reports_for(db: AsyncSession, requester_id: str, *, limit: int = 50) -> list[ReportRequest]:
    stmt = (
        select(ReportRequest)
        .where(ReportRequest.requester_id == requester_id)
        .order_by(ReportRequest.requested_at.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())
