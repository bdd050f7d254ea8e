from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.identity import AuthenticatedIdentity, Identity
from app.models.base import iso_utc
from app.schemas.report import ReportOut, ReportRequested, ReportRequestIn
from app.services.auth import get_identity, require_authenticated
from app.services.rate_limit import RateLimiter, enforce_report_quota, get_rate_limiter
from app.services.reports import list_reports_for, request_report, resolve_requester

router = APIRouter()


@router.post("/reports", response_model=ReportRequested, status_code=202)
async def create_report(
    payload: ReportRequestIn,
    identity: Identity = Depends(get_identity),
    limiter: RateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
) -> ReportRequested:
    await enforce_report_quota(limiter, identity)

    resp = await request_report(db, identity=identity, snapshot=payload.model_dump(by_alias=True))
    await db.commit()
    return ReportRequested.model_validate(resp)


@router.get("/reports/mine", response_model=list[ReportOut])
async def my_reports(
    identity: AuthenticatedIdentity = Depends(require_authenticated),
    db: AsyncSession = Depends(get_db),
) -> list[ReportOut]:
    requester_id, _ = await resolve_requester(db, identity)
    rows = await list_reports_for(db, requester_id)
    return [
        ReportOut(
            id=r.id,
            report_type=r.report_type,
            property_title=(r.property_snapshot or {}).get("title"),
            requested_at=iso_utc(r.requested_at),
            generated_at=iso_utc(r.generated_at) if r.generated_at else None,
            executive_summary=r.executive_summary,
            email_sent=r.email_sent,
            failed=r.failure_reason is not None,
            execution_name=r.execution_name,
        )
        for r in rows
    ]
