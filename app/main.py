import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import router as v1_router
from app.core.db import engine
from app.core.telemetry import setup_telemetry
from app.services.handles import get_services

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # only close clients that were actually built
    if get_services.cache_info().currsize:
        await get_services().aclose()
    await engine.dispose()
    log.info("listings api: shut down")


app = FastAPI(title="Listings API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
