import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.core.config import settings
from app.services.idempotency import purge_expired_idempotency_keys
from app.services.outbox_dispatcher import dispatch_due_executions, dispatch_outbox
from worker.celery_app import celery


log = logging.getLogger(__name__)

POLL_SECONDS = 2
BATCH_SIZE = 100
# housekeeping runs every Nth tick
PURGE_EVERY_TICKS = 1800


async def _tick(Session) -> int:
    """One dispatcher pass: outbox events first, then execution steps that are due."""
    async with Session() as db:
        events = await dispatch_outbox(db, batch_size=BATCH_SIZE)
        steps = await dispatch_due_executions(db, batch_size=BATCH_SIZE)

    if events or steps:
        log.info("tick: enqueued %d outbox events, %d execution steps", events, steps)
    return events + steps


async def _housekeeping(Session) -> None:
    async with Session() as db:
        await purge_expired_idempotency_keys(db)
        await db.commit()


async def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    celery.connection().ensure_connection(max_retries=3)
    log.info("dispatcher: started (poll every %ss)", POLL_SECONDS)

    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    ticks = 0
    try:
        while True:
            try:
                await _tick(Session)
                if ticks % PURGE_EVERY_TICKS == 0:
                    await _housekeeping(Session)
            except Exception:
                log.exception("dispatcher: tick crashed")
            ticks += 1
            await asyncio.sleep(POLL_SECONDS)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
