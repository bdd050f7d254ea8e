"""
Durable, stage-at-a-time workflow executions.

An execution is a row in workflow_executions. Each call to advance() claims
the row with a lease, runs exactly one stage and commits the result, so every
stage boundary is a durable suspension point. Stage outputs are merged into
the execution's accumulated context.

Failure routing:
  - StageRejected        -> FAILED, not retried (business outcome)
  - transient errors     -> retried with backoff until the stage's policy is exhausted
  - anything else        -> FAILED
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping, Union

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.telemetry import get_tracer
from app.models.base import utcnow
from app.models.execution import EXEC_FAILED, EXEC_RUNNING, EXEC_SUCCEEDED, ExecutionEvent, WorkflowExecution
from app.services.handles import ServiceHandles
from app.services.retry import RetryPolicy


log = logging.getLogger(__name__)
tracer = get_tracer(__name__)

DEFAULT_LEASE_SECONDS = settings.stage_lease_seconds
SUCCEEDED_STATE = "SUCCEEDED"
FAILED_STATE = "FAILED"


class StageRejected(Exception):
    """Business failure: the input can never succeed, so there is nothing to retry."""

    def __init__(self, reason: str, *, errors: list[str] | None = None):
        super().__init__(reason)
        self.reason = reason
        self.errors = list(errors or [])


class TransientStageError(Exception):
    pass


TRANSIENT_ERRORS = (TransientStageError, httpx.TransportError, OperationalError, TimeoutError, ConnectionError)


@dataclass(frozen=True)
class StageContext:
    db: AsyncSession
    services: ServiceHandles
    execution_id: str
    execution_name: str
    attempt: int


Handler = Callable[[StageContext, dict[str, Any]], Awaitable[Union[dict[str, Any], None]]]
FailureHook = Callable[[StageContext, WorkflowExecution], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    name: str
    state: str
    handler: Handler
    retry: RetryPolicy | None = None

    async def run(self, ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
        return dict(await self.handler(ctx, data) or {})


@dataclass(frozen=True)
class Parallel:
    """
    Runs branches concurrently and merges their outputs in branch order.
    The first branch to fail cancels the others and its error is the stage's.
    Branches share the stage's session, so at most one of them may use ctx.db.
    """
    name: str
    state: str
    branches: tuple[Stage, ...]
    retry: RetryPolicy | None = None

    async def run(self, ctx: StageContext, data: dict[str, Any]) -> dict[str, Any]:
        tasks = [asyncio.create_task(b.run(ctx, dict(data)), name=f"{self.name}.{b.name}") for b in self.branches]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if task in done and task.exception() is not None:
                raise task.exception()

        merged: dict[str, Any] = {}
        for task in tasks:
            merged.update(task.result())
        return merged


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.stage_max_attempts,
        base_seconds=settings.stage_backoff_base_seconds,
        cap_seconds=settings.stage_backoff_cap_seconds,
    )


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    initial_state: str
    stages: tuple[Union[Stage, Parallel], ...]
    retry: RetryPolicy = field(default_factory=default_retry_policy)
    on_failure: FailureHook | None = None


Workflows = Mapping[str, WorkflowDefinition]


def execution_name(workflow: str, entity_id: str, timestamp: str) -> str:
    stamp = re.sub(r"[^0-9A-Za-z]", "", timestamp)
    return f"{workflow}-{entity_id}-{stamp}"


async def find_execution(db: AsyncSession, name: str) -> WorkflowExecution | None:
    stmt = select(WorkflowExecution).where(WorkflowExecution.name == name).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_execution(db: AsyncSession, execution_id: str) -> WorkflowExecution | None:
    stmt = select(WorkflowExecution).where(WorkflowExecution.id == execution_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def start_execution(
    db: AsyncSession,
    definition: WorkflowDefinition,
    *,
    entity_id: str,
    payload: dict[str, Any],
    timestamp: str,
) -> tuple[WorkflowExecution, bool]:
    """
    Start (or find) the execution for one trigger. The name is derived from
    entity id and trigger timestamp, so a redelivered trigger lands on the
    existing execution. Returns (execution, created).

    Call before any other pending writes: a lost insert race rolls the
    session back.
    """
    name = execution_name(definition.name, entity_id, timestamp)

    existing = await find_execution(db, name)
    if existing:
        return existing, False

    execution = WorkflowExecution(
        name=name,
        workflow=definition.name,
        entity_id=entity_id,
        state=definition.initial_state,
        status=EXEC_RUNNING,
        stage_index=0,
        attempts=0,
        input=dict(payload),
        output={},
    )
    db.add(execution)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await find_execution(db, name)
        if existing is None:
            raise
        return existing, False

    log.info("execution %s: started (%s)", name, definition.name)
    return execution, True


async def claim_execution(db: AsyncSession, execution_id: str, *, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> str | None:
    """Take the execution's lease if it is running, due and not held. Commits."""
    now = utcnow()
    lease_id = uuid.uuid4().hex
    result = await db.execute(
        update(WorkflowExecution)
        .where(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.status == EXEC_RUNNING,
            or_(WorkflowExecution.lease_id.is_(None), WorkflowExecution.lease_expires_at < now),
            or_(WorkflowExecution.next_retry_at.is_(None), WorkflowExecution.next_retry_at <= now),
        )
        .values(lease_id=lease_id, lease_expires_at=now + timedelta(seconds=lease_seconds))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return None
    await db.commit()
    return lease_id


async def run_next_stage(
    db: AsyncSession,
    services: ServiceHandles,
    execution_id: str,
    lease_id: str,
    *,
    workflows: Workflows,
) -> WorkflowExecution | None:
    execution = await get_execution(db, execution_id)
    if execution is None or execution.lease_id != lease_id or execution.status != EXEC_RUNNING:
        # lease lost or already terminal
        return None

    definition = workflows[execution.workflow]
    stage = definition.stages[execution.stage_index]
    attempt = execution.attempts + 1
    name = execution.name
    context = {**(execution.input or {}), **(execution.output or {})}

    db.add(ExecutionEvent(
        execution_id=execution_id,
        stage=stage.name,
        from_state=execution.state,
        to_state=stage.state,
        attempt=attempt,
        outcome="started",
    ))
    execution.state = stage.state
    execution.attempts = attempt
    await db.commit()

    ctx = StageContext(db=db, services=services, execution_id=execution_id, execution_name=name, attempt=attempt)

    try:
        with tracer.start_as_current_span(f"{definition.name}.{stage.name}") as span:
            span.set_attribute("workflow.execution", name)
            span.set_attribute("workflow.attempt", attempt)
            produced = await stage.run(ctx, context)
    except StageRejected as e:
        await db.rollback()
        log.info("execution %s: stage %s rejected: %s", name, stage.name, e.reason)
        return await _fail(
            ctx, definition, stage,
            outcome="rejected",
            error=e.reason,
            detail="; ".join(e.errors) or e.reason,
            output_extra={"errors": e.errors},
        )
    except TRANSIENT_ERRORS as e:
        await db.rollback()
        policy = stage.retry or definition.retry
        detail = f"{type(e).__name__}: {e}"
        if policy.exhausted(attempt):
            log.warning("execution %s: stage %s gave up after %d attempts: %s", name, stage.name, attempt, detail)
            return await _fail(ctx, definition, stage, outcome="failed", error="RetriesExhausted", detail=detail)
        return await _schedule_retry(ctx, stage, policy, detail)
    except Exception as e:
        await db.rollback()
        log.exception("execution %s: stage %s failed", name, stage.name)
        return await _fail(ctx, definition, stage, outcome="failed", error=type(e).__name__, detail=str(e))

    execution = await get_execution(db, execution_id)
    next_index = execution.stage_index + 1
    finished = next_index >= len(definition.stages)
    to_state = SUCCEEDED_STATE if finished else definition.stages[next_index].state

    execution.output = {**(execution.output or {}), **produced}
    execution.stage_index = next_index
    execution.attempts = 0
    execution.next_retry_at = None
    execution.lease_id = None
    execution.lease_expires_at = None
    if finished:
        execution.status = EXEC_SUCCEEDED
        execution.state = SUCCEEDED_STATE
        execution.finished_at = utcnow()

    db.add(ExecutionEvent(
        execution_id=execution_id,
        stage=stage.name,
        from_state=stage.state,
        to_state=to_state,
        attempt=attempt,
        outcome="succeeded",
    ))
    await db.commit()

    log.info("execution %s: stage %s succeeded%s", name, stage.name, " (finished)" if finished else "")
    return execution


async def _schedule_retry(ctx: StageContext, stage, policy: RetryPolicy, detail: str) -> WorkflowExecution:
    execution = await get_execution(ctx.db, ctx.execution_id)
    delay = policy.backoff_seconds(ctx.attempt)

    execution.next_retry_at = utcnow() + timedelta(seconds=delay)
    execution.lease_id = None
    execution.lease_expires_at = None
    execution.error_detail = detail

    ctx.db.add(ExecutionEvent(
        execution_id=ctx.execution_id,
        stage=stage.name,
        from_state=stage.state,
        to_state=stage.state,
        attempt=ctx.attempt,
        outcome="retry_scheduled",
        error=detail,
    ))
    await ctx.db.commit()

    log.warning("execution %s: stage %s attempt %d failed (%s), retry in %ss", ctx.execution_name, stage.name, ctx.attempt, detail, delay)
    return execution


async def _fail(
    ctx: StageContext,
    definition: WorkflowDefinition,
    stage,
    *,
    outcome: str,
    error: str,
    detail: str,
    output_extra: dict[str, Any] | None = None,
) -> WorkflowExecution:
    execution = await get_execution(ctx.db, ctx.execution_id)

    execution.status = EXEC_FAILED
    execution.state = FAILED_STATE
    execution.error = error[:200]
    execution.error_detail = detail
    execution.finished_at = utcnow()
    execution.next_retry_at = None
    execution.lease_id = None
    execution.lease_expires_at = None
    if output_extra:
        execution.output = {**(execution.output or {}), **output_extra}

    ctx.db.add(ExecutionEvent(
        execution_id=ctx.execution_id,
        stage=stage.name,
        from_state=stage.state,
        to_state=FAILED_STATE,
        attempt=ctx.attempt,
        outcome=outcome,
        error=detail,
    ))

    if definition.on_failure is not None:
        try:
            await definition.on_failure(ctx, execution)
        except Exception:
            log.exception("execution %s: failure hook raised", ctx.execution_name)

    await ctx.db.commit()
    return execution


async def advance(
    db: AsyncSession,
    services: ServiceHandles,
    execution_id: str,
    *,
    workflows: Workflows,
    lease_seconds: int = DEFAULT_LEASE_SECONDS,
) -> WorkflowExecution | None:
    """Claim and run one stage. None when the execution was not claimable."""
    lease_id = await claim_execution(db, execution_id, lease_seconds=lease_seconds)
    if lease_id is None:
        return None
    return await run_next_stage(db, services, execution_id, lease_id, workflows=workflows)


async def drive_execution(
    db: AsyncSession,
    services: ServiceHandles,
    execution_id: str,
    *,
    workflows: Workflows,
    max_steps: int = 100,
) -> WorkflowExecution | None:
    """Advance in-process until terminal or blocked (lease held, retry not yet due)."""
    for _ in range(max_steps):
        execution = await advance(db, services, execution_id, workflows=workflows)
        if execution is None or execution.status != EXEC_RUNNING:
            break
    return await get_execution(db, execution_id)


async def due_execution_ids(db: AsyncSession, *, limit: int = 100) -> list[str]:
    now = utcnow()
    stmt = (
        select(WorkflowExecution.id)
        .where(
            WorkflowExecution.status == EXEC_RUNNING,
            or_(WorkflowExecution.lease_id.is_(None), WorkflowExecution.lease_expires_at < now),
            or_(WorkflowExecution.next_retry_at.is_(None), WorkflowExecution.next_retry_at <= now),
        )
        .order_by(WorkflowExecution.updated_at.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())
