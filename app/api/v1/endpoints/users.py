from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.identity import AuthenticatedIdentity
from app.schemas.user import ExecutionStarted, RegistrationIn, UpgradeIn
from app.services.auth import require_admin, require_internal_key
from app.services.users import register_user, request_upgrade

router = APIRouter()


# called by the identity provider's post-confirmation hook
@router.post(
    "/internal/users/registered",
    response_model=ExecutionStarted,
    status_code=202,
    dependencies=[Depends(require_internal_key)],
)
async def user_registered(payload: RegistrationIn, db: AsyncSession = Depends(get_db)) -> ExecutionStarted:
    resp = await register_user(db, registration=payload.model_dump(by_alias=True))
    await db.commit()
    return ExecutionStarted.model_validate(resp)


@router.post("/users/{user_id}/upgrade", response_model=ExecutionStarted, status_code=202)
async def upgrade_user(
    user_id: str,
    payload: UpgradeIn,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ExecutionStarted:
    resp = await request_upgrade(db, admin=admin, user_id=user_id, tier=payload.tier)
    await db.commit()
    return ExecutionStarted.model_validate(resp)
