from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.execution import EXEC_FAILED, EXEC_RUNNING, EXEC_SUCCEEDED
from app.services.ingress import find_queued_trigger
from app.services.reports import find_report_by_execution
from app.services.retrieval import issue_retrieval_url
from app.workflows.engine import find_execution
from app.workflows.report_generation import FAILURE_MESSAGE as REPORT_FAILURE_MESSAGE


GENERIC_FAILURE_MESSAGE = "Processing failed. Please try again."

STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_UNKNOWN = "UNKNOWN"


async def get_execution_status(db: AsyncSession, name: str) -> dict[str, Any]:
    """
    Caller-facing view of an execution. A completed report gets a freshly
    signed artifact URL on every call; failures carry a generic reason only.
    """
    execution = await find_execution(db, name)

    if execution is None:
        # accepted but the trigger has not been consumed yet
        report = await find_report_by_execution(db, name)
        if report is not None and report.failure_reason is None:
            return {"executionName": name, "status": STATUS_IN_PROGRESS, "reportId": report.id}
        trigger = await find_queued_trigger(db, name)
        if trigger is not None:
            return {"executionName": name, "status": STATUS_IN_PROGRESS, "entityId": trigger.aggregate_id}
        return {"executionName": name, "status": STATUS_UNKNOWN}

    out: dict[str, Any] = {
        "executionName": name,
        "workflow": execution.workflow,
        "entityId": execution.entity_id,
        "state": execution.state,
    }
    if execution.workflow == "report_generation":
        out["reportId"] = execution.entity_id

    if execution.status == EXEC_RUNNING:
        out["status"] = STATUS_IN_PROGRESS
    elif execution.status == EXEC_SUCCEEDED:
        out["status"] = STATUS_COMPLETED
        output = execution.output or {}
        artifact_key = output.get("artifactKey")
        if artifact_key:
            out["artifactKey"] = artifact_key
            out["artifactUri"] = output.get("artifactUri")
            out["signedUrl"] = issue_retrieval_url(artifact_key)
    elif execution.status == EXEC_FAILED:
        out["status"] = STATUS_FAILED
        out["error"] = REPORT_FAILURE_MESSAGE if execution.workflow == "report_generation" else GENERIC_FAILURE_MESSAGE
        errors = (execution.output or {}).get("errors")
        if errors:
            # business rejections (validation) are safe to show the submitter
            out["errors"] = errors
    else:
        out["status"] = STATUS_UNKNOWN

    return out
