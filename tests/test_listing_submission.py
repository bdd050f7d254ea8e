from datetime import timedelta

from sqlalchemy import func, select, update

from app.models.execution import EXEC_FAILED, EXEC_SUCCEEDED, WorkflowExecution
from app.models.base import utcnow
from app.models.idempotency import IdempotencyKey
from app.models.listing import Listing
from app.models.outbox import OutboxEvent
from app.services.idempotency import purge_expired_idempotency_keys
from app.services.ingress import handle_outbox_event
from app.workflows.engine import find_execution
from tests.fixtures_seed import IMAGE_BYTES, listing_input, owner_headers, seed_account


GOOD_URL = "https://img.example.com/front.jpg"
MISSING_URL = "https://img.example.com/gone.jpg"


async def _submit(client, body, headers=None):
    r = await client.post("/v1/listings", json=body, headers=headers or {})
    assert r.status_code == 202, r.text
    return r.json()


async def test_submission_is_accepted_then_processed(client, db_session, drain, remote_images, email_sender):
    await seed_account(db_session)
    remote_images[GOOD_URL] = (200, IMAGE_BYTES, "image/jpeg")

    accepted = await _submit(client, listing_input(images=[GOOD_URL, MISSING_URL]), owner_headers())

    assert accepted["propertyId"].startswith("prop_")
    assert accepted["executionName"].startswith(f"listing_submission-{accepted['propertyId']}-")
    assert "notified" in accepted["message"]
    # nothing is stored until the workflow runs
    assert await db_session.get(Listing, accepted["propertyId"]) is None

    await drain()

    listing = (await db_session.execute(select(Listing).where(Listing.id == accepted["propertyId"]))).scalar_one()
    assert listing.status == "PENDING_REVIEW"
    assert listing.is_public is True
    assert listing.images == [f"users/usr_owner1/listings/{listing.id}/image-1.jpg"]
    assert listing.submitted_by == "sub-owner-1"
    assert listing.owner_key == "USER#sub-owner-1"

    # registered account wins over the contact details typed into the form
    assert [m.to_email for m in email_sender.sent] == ["owner@example.com"]
    assert email_sender.sent[0].subject == "Property Listing Submitted - Pending Approval"
    assert "Sunny 3BR Bungalow" in email_sender.sent[0].text

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_SUCCEEDED
    assert execution.output["imageFailures"] == [MISSING_URL]

    r = await client.get(f"/v1/executions/{accepted['executionName']}")
    assert r.json()["status"] == "COMPLETED"


async def test_invalid_submission_stores_nothing(client, db_session, drain):
    body = listing_input()
    del body["contactEmail"]

    accepted = await _submit(client, body)
    await drain()

    count = (await db_session.execute(select(func.count()).select_from(Listing))).scalar_one()
    assert count == 0

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_FAILED
    assert execution.error == "ValidationFailed"

    r = await client.get(f"/v1/executions/{accepted['executionName']}")
    body = r.json()
    assert body["status"] == "FAILED"
    assert body["errors"] == ["Missing required field: contactEmail"]


async def test_unusable_numbers_fail_as_validation_not_as_a_crash(client, db_session, drain):
    accepted = await _submit(client, listing_input(yearBuilt="nan", parkingSpaces="Infinity", amenities=5))
    await drain()

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_FAILED
    assert execution.error == "ValidationFailed"

    r = await client.get(f"/v1/executions/{accepted['executionName']}")
    assert r.json()["errors"] == [
        "Year built must be between 1800 and next year",
        "Parking spaces must be a whole number, 0 or greater",
        "Amenities must be a list of strings",
    ]


async def test_submission_reads_in_progress_before_the_trigger_is_consumed(client):
    accepted = await _submit(client, listing_input(), owner_headers())

    r = await client.get(f"/v1/executions/{accepted['executionName']}")
    assert r.json() == {
        "executionName": accepted["executionName"],
        "status": "IN_PROGRESS",
        "entityId": accepted["propertyId"],
    }

    r = await client.get("/v1/executions/listing_submission-prop_missing-20240101T000000000Z")
    assert r.json()["status"] == "UNKNOWN"


async def test_anonymous_submission_notifies_contact_email(client, db_session, drain, remote_images, email_sender):
    remote_images[GOOD_URL] = (200, IMAGE_BYTES, "image/jpeg")

    accepted = await _submit(client, listing_input(images=[GOOD_URL]))
    await drain()

    listing = await db_session.get(Listing, accepted["propertyId"])
    assert listing.submitted_by is None
    assert listing.owner_key is None
    assert listing.images == [f"users/anonymous/listings/{listing.id}/image-1.jpg"]
    assert [m.to_email for m in email_sender.sent] == ["sam@example.com"]


async def test_email_failure_does_not_fail_the_submission(client, db_session, drain, remote_images, email_sender):
    remote_images[GOOD_URL] = (200, IMAGE_BYTES, "image/jpeg")
    email_sender.fail = True

    accepted = await _submit(client, listing_input(images=[GOOD_URL]))
    await drain()

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_SUCCEEDED
    assert execution.output["notificationSent"] is False
    assert len(email_sender.attempts) == 1
    assert (await db_session.get(Listing, accepted["propertyId"])).status == "PENDING_REVIEW"


async def test_unreachable_images_only_fail_after_retries(client, db_session, drain, remote_images):
    remote_images[GOOD_URL] = (503, b"", "text/plain")

    accepted = await _submit(client, listing_input(images=[GOOD_URL]))
    await drain()

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_FAILED
    assert execution.error == "RetriesExhausted"
    assert await db_session.get(Listing, accepted["propertyId"]) is None

    r = await client.get(f"/v1/executions/{accepted['executionName']}")
    assert r.json()["status"] == "FAILED"
    assert "errors" not in r.json()


async def test_redelivered_trigger_starts_one_execution(client, db_session, services):
    accepted = await _submit(client, listing_input())
    event = (await db_session.execute(select(OutboxEvent))).scalar_one()

    first = await handle_outbox_event(db_session, services, event_type=event.event_type, payload=event.payload)
    await db_session.commit()
    second = await handle_outbox_event(db_session, services, event_type=event.event_type, payload=event.payload)
    await db_session.commit()

    assert first == second
    count = (await db_session.execute(select(func.count()).select_from(WorkflowExecution))).scalar_one()
    assert count == 1
    assert (await find_execution(db_session, accepted["executionName"])).id == first


async def test_idempotency_key_replays_the_first_response(client, db_session):
    headers = {**owner_headers(), "Idempotency-Key": "submit-1"}

    first = await _submit(client, listing_input(), headers)
    second = await _submit(client, listing_input(), headers)

    assert second == first
    count = (await db_session.execute(select(func.count()).select_from(OutboxEvent))).scalar_one()
    assert count == 1


async def test_idempotency_key_reuse_with_a_different_body_conflicts(client):
    headers = {**owner_headers(), "Idempotency-Key": "submit-2"}

    await _submit(client, listing_input(), headers)
    r = await client.post("/v1/listings", json=listing_input(price=1), headers=headers)

    assert r.status_code == 409


async def test_expired_idempotency_key_is_taken_over(client, db_session):
    headers = {**owner_headers(), "Idempotency-Key": "submit-3"}
    first = await _submit(client, listing_input(), headers)

    await db_session.execute(update(IdempotencyKey).values(expires_at=utcnow() - timedelta(minutes=1)))
    await db_session.commit()

    # a different body is fine once the window has passed
    second = await _submit(client, listing_input(price=1), headers)
    assert second["propertyId"] != first["propertyId"]

    await db_session.execute(update(IdempotencyKey).values(expires_at=utcnow() - timedelta(minutes=1)))
    await db_session.commit()
    assert await purge_expired_idempotency_keys(db_session) == 1
    await db_session.commit()
    assert (await db_session.execute(select(func.count()).select_from(IdempotencyKey))).scalar_one() == 0


async def test_pending_listing_is_hidden_from_strangers(client, db_session, drain, remote_images):
    await seed_account(db_session)
    remote_images[GOOD_URL] = (200, IMAGE_BYTES, "image/jpeg")
    accepted = await _submit(client, listing_input(images=[GOOD_URL]), owner_headers())
    await drain()

    url = f"/v1/listings/{accepted['propertyId']}"
    assert (await client.get(url)).status_code == 404
    assert (await client.get(url, headers=owner_headers("someone-else"))).status_code == 404

    r = await client.get(url, headers=owner_headers())
    assert r.status_code == 200
    assert r.json()["status"] == "PENDING_REVIEW"
    assert r.json()["zipCode"] == "78701"
