from urllib.parse import urlparse

import pytest
from sqlalchemy import select

from app.models.execution import EXEC_FAILED, EXEC_SUCCEEDED
from app.models.report import ReportRequest
from app.reports.ai_content import AIContentError
from app.services.outbox_dispatcher import claim_outbox_event_ids
from app.workflows import report_generation
from app.workflows.engine import advance, drive_execution, find_execution
from app.workflows.registry import WORKFLOWS
from tests.fixtures_seed import owner_headers, report_input, seed_account
from worker.tasks import _process_outbox_event


async def _request(client, body=None, headers=None) -> dict:
    r = await client.post("/v1/reports", json=body or report_input(), headers=headers or {})
    assert r.status_code == 202, r.text
    return r.json()


async def _status(client, name) -> dict:
    r = await client.get(f"/v1/executions/{name}")
    assert r.status_code == 200
    return r.json()


async def _report_row(db, report_id) -> ReportRequest:
    stmt = select(ReportRequest).where(ReportRequest.id == report_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one()


async def test_report_is_generated_stored_and_announced(client, db_session, drain, services, email_sender):
    await seed_account(db_session)

    accepted = await _request(client, headers=owner_headers())
    assert accepted["executionName"].startswith(f"report_generation-{accepted['reportId']}-")

    await drain()

    report = await _report_row(db_session, accepted["reportId"])
    assert report.requester_id == "usr_owner1"
    assert report.executive_summary == "The property is priced in line with the local market."
    assert report.recommendations.startswith("List in spring")
    assert report.model_used == "test-model"
    assert report.email_sent is True
    assert report.failure_reason is None
    assert report.artifact_key.startswith("usr_owner1/reports/")
    assert report.artifact_key.endswith(f"_market_Sunny_3BR_Bungalow_{report.id}.pdf")
    assert services.store.head(report.artifact_key)["metadata"]["reportType"] == "MARKET_ANALYSIS"

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_SUCCEEDED
    # the document lives in storage, not in the execution record
    assert execution.output["pdfBase64"] is None

    status = await _status(client, accepted["executionName"])
    assert status["status"] == "COMPLETED"
    assert status["reportId"] == accepted["reportId"]
    assert status["artifactKey"] == report.artifact_key
    assert status["artifactUri"] == services.store.uri_for(report.artifact_key)

    signed = urlparse(status["signedUrl"])
    r = await client.get(f"{signed.path}?{signed.query}")
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")

    assert len(email_sender.sent) == 1
    message = email_sender.sent[0]
    assert message.to_email == "owner@example.com"
    assert message.subject == "Your Market Analysis Report is Ready - Sunny 3BR Bungalow"
    assert "/v1/artifacts?token=" in message.text


async def test_status_polls_never_regress(client, db_session, services):
    accepted = await _request(client)
    name = accepted["executionName"]
    seen = [(await _status(client, name))["status"]]

    lease_id, claimed = await claim_outbox_event_ids(db_session)
    await db_session.commit()
    execution_id = await _process_outbox_event(db_session, services, claimed[0], lease_id)
    seen.append((await _status(client, name))["status"])

    await advance(db_session, services, execution_id, workflows=WORKFLOWS)
    seen.append((await _status(client, name))["status"])

    await drive_execution(db_session, services, execution_id, workflows=WORKFLOWS)
    seen.append((await _status(client, name))["status"])
    seen.append((await _status(client, name))["status"])

    assert seen == ["IN_PROGRESS", "IN_PROGRESS", "IN_PROGRESS", "COMPLETED", "COMPLETED"]


async def test_signed_url_is_fresh_on_every_poll(client, drain):
    accepted = await _request(client)
    await drain()

    first = (await _status(client, accepted["executionName"]))["signedUrl"]
    second = (await _status(client, accepted["executionName"]))["signedUrl"]

    # Fernet tokens carry a timestamp and random IV
    assert first != second


async def test_rendering_failure_fails_without_artifact(client, db_session, drain, services, monkeypatch):
    def broken_renderer(**kwargs):
        raise RuntimeError("layout overflow")

    monkeypatch.setattr(report_generation, "render_report_pdf", broken_renderer)

    accepted = await _request(client)
    await drain()

    execution = await find_execution(db_session, accepted["executionName"])
    assert execution.status == EXEC_FAILED
    assert execution.state == "FAILED"
    assert execution.output.get("executiveSummary")
    assert "artifactKey" not in execution.output

    status = await _status(client, accepted["executionName"])
    assert status["status"] == "FAILED"
    assert status["error"] == "Report generation failed. Please try again."
    assert "signedUrl" not in status
    assert "artifactKey" not in status
    assert "artifactUri" not in status

    report = await _report_row(db_session, accepted["reportId"])
    assert report.failure_reason == "Report generation failed. Please try again."
    assert report.artifact_key is None
    assert not list(services.store.base.rglob("*.pdf"))


async def test_transient_ai_error_is_retried(client, db_session, drain, ai_generator):
    ai_generator.errors = [AIContentError("rate limited", retryable=True)]

    accepted = await _request(client)
    await drain()

    assert len(ai_generator.prompts) == 2
    assert (await find_execution(db_session, accepted["executionName"])).status == EXEC_SUCCEEDED


async def test_permanent_ai_error_fails_immediately(client, db_session, drain, ai_generator):
    ai_generator.errors = [AIContentError("AI provider not configured")]

    accepted = await _request(client)
    await drain()

    assert len(ai_generator.prompts) == 1
    assert (await _status(client, accepted["executionName"]))["status"] == "FAILED"


async def test_email_failure_still_completes_report(client, db_session, drain, email_sender):
    await seed_account(db_session)
    email_sender.fail = True

    accepted = await _request(client, headers=owner_headers())
    await drain()

    assert (await _status(client, accepted["executionName"]))["status"] == "COMPLETED"
    assert (await _report_row(db_session, accepted["reportId"])).email_sent is False


async def test_prompt_reflects_report_type_and_context(client, drain, ai_generator):
    await _request(
        client,
        report_input(reportType="INVESTMENT_ANALYSIS", additionalContext="Buyer plans a short-term rental."),
    )
    await drain()

    prompt = ai_generator.prompts[0]
    assert "Buyer plans a short-term rental." in prompt
    assert "Price: $425,000" in prompt
    assert "INVESTMENT ANALYSIS" in prompt


@pytest.mark.parametrize(
    "overrides",
    [{"reportType": "ASTROLOGY"}, {"price": 0}, {"title": ""}],
)
async def test_invalid_report_requests_are_rejected(client, overrides):
    r = await client.post("/v1/reports", json=report_input(**overrides))
    assert r.status_code == 422


async def test_report_requests_are_rate_limited(client, rate_limiter):
    rate_limiter.limit_reached = True

    r = await client.post("/v1/reports", json=report_input())

    assert r.status_code == 429
    assert r.headers["retry-after"] == "60"


async def test_my_reports(client, db_session, drain):
    await seed_account(db_session)
    accepted = await _request(client, headers=owner_headers())
    await _request(client)
    await drain()

    r = await client.get("/v1/reports/mine", headers=owner_headers())
    assert r.status_code == 200
    assert [x["id"] for x in r.json()] == [accepted["reportId"]]
    assert r.json()[0]["emailSent"] is True

    assert (await client.get("/v1/reports/mine")).status_code == 401


async def test_unknown_execution_is_reported_as_unknown(client):
    assert (await _status(client, "report_generation-nope-1"))["status"] == "UNKNOWN"


async def test_tampered_artifact_token_is_refused(client):
    r = await client.get("/v1/artifacts", params={"token": "not-a-token"})
    assert r.status_code == 403
