from sqlalchemy import select

from app.models.execution import EXEC_FAILED, EXEC_SUCCEEDED
from app.models.user_account import UserAccount
from app.services.ingress import handle_outbox_event
from app.workflows.engine import drive_execution, find_execution
from app.workflows.registry import WORKFLOWS
from tests.fixtures_seed import admin_headers, owner_headers, seed_account


INTERNAL = {"X-Internal-Admin-Key": "test-internal-key"}

REGISTRATION = {
    "cognitoUserId": "sub-new-1",
    "email": "nora@example.com",
    "firstName": "Nora",
    "lastName": "New",
    "contactNumber": "555-0123",
}


async def _account(db, external_id) -> UserAccount | None:
    stmt = select(UserAccount).where(UserAccount.external_id == external_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def test_registration_provisions_account_folder_and_welcome(client, db_session, drain, services, email_sender):
    r = await client.post("/v1/internal/users/registered", json=REGISTRATION, headers=INTERNAL)
    assert r.status_code == 202
    name = r.json()["executionName"]
    assert name.startswith("user_registration-sub-new-1-")

    await drain()

    account = await _account(db_session, "sub-new-1")
    assert account is not None
    assert account.id.startswith("usr")
    assert account.email == "nora@example.com"
    assert account.tier == "user"
    assert services.store.folder_exists(f"users/{account.id}")

    execution = await find_execution(db_session, name)
    assert execution.status == EXEC_SUCCEEDED
    assert execution.output["accountCreated"] is True
    assert execution.output["storageFolder"] == f"users/{account.id}/"

    assert [m.to_email for m in email_sender.sent] == ["nora@example.com"]
    assert email_sender.sent[0].to_name == "Nora New"


async def test_registration_requires_internal_key(client):
    r = await client.post("/v1/internal/users/registered", json=REGISTRATION)
    assert r.status_code == 403

    r = await client.post("/v1/internal/users/registered", json=REGISTRATION, headers={"X-Internal-Admin-Key": "nope"})
    assert r.status_code == 403


async def test_repeated_registration_keeps_one_account(client, db_session, drain, email_sender):
    await seed_account(db_session, account_id="usr_existing", external_id="sub-new-1", email="nora@example.com")

    r = await client.post("/v1/internal/users/registered", json=REGISTRATION, headers=INTERNAL)
    await drain()

    execution = await find_execution(db_session, r.json()["executionName"])
    assert execution.status == EXEC_SUCCEEDED
    assert execution.output["userId"] == "usr_existing"
    assert execution.output["accountCreated"] is False

    rows = (await db_session.execute(select(UserAccount).where(UserAccount.external_id == "sub-new-1"))).scalars().all()
    assert len(rows) == 1


async def test_admin_upgrades_tier(client, db_session, drain, email_sender):
    await seed_account(db_session)

    r = await client.post("/v1/users/usr_owner1/upgrade", json={"tier": "paid"}, headers=admin_headers())
    assert r.status_code == 202
    await drain()

    account = await _account(db_session, "sub-owner-1")
    assert account.tier == "paid"

    execution = await find_execution(db_session, r.json()["executionName"])
    assert execution.status == EXEC_SUCCEEDED
    assert execution.output["previousTier"] == "user"

    assert len(email_sender.sent) == 1
    assert email_sender.sent[0].to_email == "owner@example.com"
    assert email_sender.sent[0].subject == "Welcome to Lambda Real Estate Pro!"


async def test_upgrade_requests_are_checked(client, db_session):
    await seed_account(db_session)

    r = await client.post("/v1/users/usr_owner1/upgrade", json={"tier": "paid"}, headers=owner_headers())
    assert r.status_code == 403

    r = await client.post("/v1/users/usr_missing/upgrade", json={"tier": "paid"}, headers=admin_headers())
    assert r.status_code == 404

    r = await client.post("/v1/users/usr_owner1/upgrade", json={"tier": "platinum"}, headers=admin_headers())
    assert r.status_code == 422


async def test_upgrade_of_vanished_user_is_rejected(db_session, services, email_sender):
    execution_id = await handle_outbox_event(
        db_session,
        services,
        event_type="user.upgrade_requested",
        payload={"userId": "usr_gone", "tier": "paid", "requestedBy": "sub-admin-1", "timestamp": "2024-05-01T10:00:00.000Z"},
    )
    await db_session.commit()

    execution = await drive_execution(db_session, services, execution_id, workflows=WORKFLOWS)

    assert execution.status == EXEC_FAILED
    assert execution.error == "UserNotFound"
    assert execution.output["errors"] == ["Unknown user: usr_gone"]
    assert email_sender.attempts == []
