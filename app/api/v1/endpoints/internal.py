from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.services.auth import require_internal_key
from app.services.outbox_dispatcher import dispatch_due_executions, dispatch_outbox

router = APIRouter()

@router.post("/internal/outbox/dispatch", dependencies=[Depends(require_internal_key)])
async def internal_dispatch_outbox(db: AsyncSession = Depends(get_db)) -> dict:
    count = await dispatch_outbox(db, batch_size=100)
    return {"dispatched": count}


@router.post("/internal/executions/dispatch", dependencies=[Depends(require_internal_key)])
async def internal_dispatch_executions(db: AsyncSession = Depends(get_db)) -> dict:
    count = await dispatch_due_executions(db, batch_size=100)
    return {"dispatched": count}
