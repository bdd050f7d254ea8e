from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user_account import USER_TIERS, UserAccount


class UnknownTier(ValueError):
    pass


async def get_account(db: AsyncSession, account_id: str) -> UserAccount | None:
    return (await db.execute(select(UserAccount).where(UserAccount.id == account_id))).scalar_one_or_none()


async def find_by_external_id(db: AsyncSession, external_id: str) -> UserAccount | None:
    stmt = select(UserAccount).where(UserAccount.external_id == external_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_account(
    db: AsyncSession,
    *,
    account_id: str,
    external_id: str,
    email: str,
    first_name: str = "",
    last_name: str = "",
    contact_number: str = "",
    created_by: str | None = None,
) -> tuple[UserAccount, bool]:
    """Insert the account unless the identity already has one. Returns (account, created)."""
    existing = await find_by_external_id(db, external_id)
    if existing:
        return existing, False

    account = UserAccount(
        id=account_id,
        external_id=external_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        contact_number=contact_number,
        created_by=created_by,
        updated_by=created_by,
    )
    db.add(account)
    await db.flush()
    return account, True


async def set_tier(db: AsyncSession, account: UserAccount, tier: str, *, updated_by: str | None = None) -> str:
    if tier not in USER_TIERS:
        raise UnknownTier(tier)
    previous = account.tier
    account.tier = tier
    account.updated_by = updated_by
    await db.flush()
    return previous
