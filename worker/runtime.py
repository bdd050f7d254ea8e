"""
Per-process async runtime for Celery tasks.

A prefork child keeps one event loop, one engine and one set of service
handles for its lifetime. Pooled connections and the HTTP client are bound
to the loop that opened them, so every task must run on this same loop.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Awaitable, Callable

from celery.signals import worker_process_shutdown
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.telemetry import setup_worker_telemetry
from app.services.handles import ServiceHandles, build_services


log = logging.getLogger(__name__)


class WorkerRuntime:
    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.engine = create_async_engine(settings.database_url, pool_pre_ping=True)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        self.services = build_services()

    def run(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async def _go():
            async with self.Session() as db:
                return await fn(db, self.services, *args)

        return self.loop.run_until_complete(_go())

    def close(self) -> None:
        self.loop.run_until_complete(self.services.aclose())
        self.loop.run_until_complete(self.engine.dispose())
        self.loop.close()


@lru_cache(maxsize=1)
def get_runtime() -> WorkerRuntime:
    setup_worker_telemetry()
    return WorkerRuntime()


@worker_process_shutdown.connect
def _close_runtime(**_: Any) -> None:
    if get_runtime.cache_info().currsize:
        log.info("worker: closing runtime")
        get_runtime().close()
