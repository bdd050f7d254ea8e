from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select

from app.core.config import settings
from app.models.base import iso_utc, utcnow
from app.models.execution import WorkflowExecution
from app.models.report import ReportRequest
from app.notifications.dispatcher import notify
from app.notifications.templates import NotificationEvent, report_type_display
from app.reports.ai_content import AIContentError, synthesize_report_content
from app.reports.artifacts import store_report_pdf
from app.reports.pdf import render_report_pdf
from app.services.accounts import find_by_external_id
from app.workflows.engine import Stage, StageContext, TransientStageError, WorkflowDefinition


log = logging.getLogger(__name__)

WORKFLOW_NAME = "report_generation"
FAILURE_MESSAGE = "Report generation failed. Please try again."


async def _report(ctx: StageContext, report_id: str) -> ReportRequest | None:
    return (await ctx.db.execute(select(ReportRequest).where(ReportRequest.id == report_id))).scalar_one_or_none()


async def synthesize(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    try:
        return await synthesize_report_content(ctx.services.ai, data["input"])
    except AIContentError as e:
        if e.retryable:
            raise TransientStageError(str(e)) from e
        raise


async def render(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    generated_at = utcnow()
    pdf = await asyncio.to_thread(
        render_report_pdf,
        report_id=data["reportId"],
        snapshot=data["input"],
        content=data.get("content") or "",
        executive_summary=data.get("executiveSummary"),
        market_insights=data.get("marketInsights"),
        recommendations=data.get("recommendations"),
        brand=settings.brand_name,
        generated_at=generated_at,
    )
    return {"pdfBase64": base64.b64encode(pdf).decode("ascii"), "generatedAt": iso_utc(generated_at)}


async def store(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    owner = data.get("userId") or "anonymous"
    if data.get("cognitoUserId"):
        account = await find_by_external_id(ctx.db, data["cognitoUserId"])
        if account:
            owner = account.id

    generated_at = datetime.fromisoformat(data["generatedAt"].replace("Z", "+00:00"))
    snapshot = data["input"]
    artifact = store_report_pdf(
        ctx.services.store,
        owner=owner,
        report_id=data["reportId"],
        report_type=snapshot.get("reportType") or "CUSTOM",
        title=str(snapshot.get("title") or "report"),
        pdf=base64.b64decode(data["pdfBase64"]),
        generated_at=generated_at,
        generation_time_ms=data.get("generationTimeMs"),
    )

    report = await _report(ctx, data["reportId"])
    if report is not None:
        report.generated_at = generated_at
        report.content = data.get("content")
        report.executive_summary = data.get("executiveSummary")
        report.market_insights = data.get("marketInsights")
        report.recommendations = data.get("recommendations")
        report.model_used = data.get("modelUsed")
        report.generation_time_ms = data.get("generationTimeMs")
        report.artifact_key = artifact.key
        report.artifact_uri = artifact.uri
    else:
        log.warning("report %s: row missing, artifact stored at %s", data["reportId"], artifact.key)

    # the document now lives in storage; keep it out of the execution context
    return {
        "pdfBase64": None,
        "artifactKey": artifact.key,
        "artifactUri": artifact.uri,
        "signedUrl": artifact.signed_url,
        "fileName": artifact.filename,
    }


async def notify_requester(ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
    snapshot = data["input"]
    report_type = snapshot.get("reportType") or "CUSTOM"
    sent = await notify(
        ctx.db,
        ctx.services.email,
        NotificationEvent.REPORT_READY,
        external_id=data.get("cognitoUserId"),
        fields={
            "report_type_display": report_type_display(report_type),
            "title": snapshot.get("title"),
            "address": snapshot.get("address"),
            "download_url": data["signedUrl"],
            "report_id": data["reportId"],
        },
    )
    report = await _report(ctx, data["reportId"])
    if report is not None:
        report.email_sent = sent
    return {"emailSent": sent}


async def record_failure(ctx: StageContext, execution: WorkflowExecution) -> None:
    report = await _report(ctx, execution.entity_id)
    if report is not None:
        report.failure_reason = FAILURE_MESSAGE


REPORT_GENERATION = WorkflowDefinition(
    name=WORKFLOW_NAME,
    initial_state="REQUESTED",
    stages=(
        Stage("synthesize", "SYNTHESIZING", synthesize),
        Stage("render", "RENDERING", render),
        Stage("store", "STORING", store),
        Stage("notify", "NOTIFYING", notify_requester),
    ),
    on_failure=record_failure,
)
