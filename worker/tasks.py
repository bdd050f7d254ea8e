import logging
from datetime import timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from worker.celery_app import WORKFLOWS_QUEUE, celery
from worker.runtime import get_runtime
import app.models  # noqa: F401  # ensures Models are registered
from app.models.base import utcnow
from app.models.execution import EXEC_RUNNING
from app.models.outbox import OutboxEvent
from app.services.handles import ServiceHandles
from app.services.ingress import UnknownEventType, handle_outbox_event
from app.workflows.engine import advance
from app.workflows.registry import WORKFLOWS


log = logging.getLogger(__name__)

# an outbox event that keeps failing is parked instead of looping forever
MAX_OUTBOX_ATTEMPTS = 10


async def _release(db: AsyncSession, outbox_id: str, lease_id: str, *, status: str, error: str) -> None:
    await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
        .values(
            status=status,
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
            last_error=error,
        )
    )
    await db.commit()


async def _process_outbox_event(db: AsyncSession, services: ServiceHandles, outbox_id: str, lease_id: str) -> str | None:
    ev = (await db.execute(select(OutboxEvent).where(OutboxEvent.id == outbox_id))).scalar_one_or_none()
    if not ev:
        return None

    # Lease ownership check
    if ev.lease_id != lease_id or ev.status != "processing":
        # Another dispatcher reclaimed it or it's already done.
        return None

    event_type, payload, attempts = ev.event_type, dict(ev.payload or {}), ev.attempts

    try:
        execution_id = await handle_outbox_event(db, services, event_type=event_type, payload=payload)

        # Mark done only if lease still matches
        result = await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
            .values(
                status="done",
                processed_at=utcnow(),
                lease_id=None,
                lease_expires_at=None,
            )
        )
        if result.rowcount == 0:
            # lease lost; do not overwrite
            await db.rollback()
            return None

        await db.commit()
        return execution_id

    except UnknownEventType:
        await db.rollback()
        log.error("outbox %s: no handler for %s", outbox_id, event_type)
        await _release(db, outbox_id, lease_id, status="failed", error=f"unknown event type: {event_type}")
        return None
    except Exception as e:
        await db.rollback()
        log.exception("outbox %s: %s failed (attempt %d)", outbox_id, event_type, attempts)
        status = "failed" if attempts >= MAX_OUTBOX_ATTEMPTS else "pending"
        await _release(db, outbox_id, lease_id, status=status, error=f"{type(e).__name__}: {e}")
        return None


async def _advance_execution(db: AsyncSession, services: ServiceHandles, execution_id: str) -> float | None:
    """Run one stage. Returns the delay before the next step, or None when there is nothing to schedule."""
    execution = await advance(db, services, execution_id, workflows=WORKFLOWS)
    if execution is None or execution.status != EXEC_RUNNING:
        return None
    if execution.next_retry_at is None:
        return 0.0
    due = execution.next_retry_at
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return max(0.0, (due - utcnow()).total_seconds())


@celery.task(name="worker.tasks.process_outbox_event", bind=True, max_retries=5)
def process_outbox_event(self, outbox_id: str, lease_id: str) -> None:
    execution_id = get_runtime().run(_process_outbox_event, outbox_id, lease_id)
    if execution_id:
        advance_execution.apply_async(args=[execution_id], queue=WORKFLOWS_QUEUE)


@celery.task(name="worker.tasks.advance_execution", bind=True)
def advance_execution(self, execution_id: str) -> None:
    delay = get_runtime().run(_advance_execution, execution_id)
    if delay is not None:
        # a lost enqueue is picked up again by the dispatcher's due scan
        advance_execution.apply_async(args=[execution_id], queue=WORKFLOWS_QUEUE, countdown=delay)
