from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.execution import ExecutionStatusOut
from app.services.executions import get_execution_status

router = APIRouter()


@router.get("/executions/{execution_name}", response_model=ExecutionStatusOut, response_model_exclude_none=True)
async def execution_status(execution_name: str, db: AsyncSession = Depends(get_db)) -> ExecutionStatusOut:
    return ExecutionStatusOut.model_validate(await get_execution_status(db, execution_name))
