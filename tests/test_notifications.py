import pytest

from app.notifications.dispatcher import Recipient, dispatch_notification, listing_fields, notify
from app.notifications.email import EmailSendError, SendGridEmailSender, EmailMessage
from app.notifications.templates import NotificationEvent, TemplateFieldMissing, render, report_type_display
from tests.fixtures_seed import listing_input, seed_account


def _listing_fields(**extra):
    fields = listing_fields(listing_input())
    fields.update(extra)
    return {"name": "Sam Seller", **fields}


def test_rejection_email_carries_reason_and_details():
    rendered = render(NotificationEvent.REJECTED, _listing_fields(reason="Incomplete photos"))

    assert rendered.subject == "Property Listing Review Update"
    assert "Reason: Incomplete photos" in rendered.text
    assert "Price: $425,000" in rendered.text
    assert "12 Oak Street, Austin, TX 78701" in rendered.text
    assert "Incomplete photos" in rendered.html
    assert rendered.text.rstrip().endswith("The Lambda Real Estate Pro Team")


def test_html_body_is_escaped():
    rendered = render(NotificationEvent.APPROVED, _listing_fields(title="<b>Loft</b> & more"))

    assert "&lt;b&gt;Loft&lt;/b&gt; &amp; more" in rendered.html
    assert "<b>Loft</b> & more" in rendered.text


def test_missing_template_field_raises():
    with pytest.raises(TemplateFieldMissing):
        render(NotificationEvent.REJECTED, _listing_fields())


def test_report_type_display():
    assert report_type_display("COMPARATIVE_MARKET_ANALYSIS") == "Comparative Market Analysis"
    assert report_type_display("CUSTOM") == "Custom"


async def test_dispatch_never_raises(email_sender):
    email_sender.fail = True
    ok = await dispatch_notification(
        email_sender, NotificationEvent.WELCOME, Recipient(email="a@example.com", name="A"), {}
    )
    assert ok is False
    assert len(email_sender.attempts) == 1

    # render errors are contained too
    ok = await dispatch_notification(
        email_sender, NotificationEvent.APPROVED, Recipient(email="a@example.com", name="A"), {}
    )
    assert ok is False
    assert len(email_sender.attempts) == 1


async def test_dispatch_without_recipient_is_skipped(email_sender):
    assert await dispatch_notification(email_sender, NotificationEvent.WELCOME, None, {}) is False
    assert email_sender.attempts == []


async def test_registered_account_wins_over_contact_details(db_session, email_sender):
    await seed_account(db_session)

    ok = await notify(
        db_session,
        email_sender,
        NotificationEvent.SUBMITTED_PENDING,
        external_id="sub-owner-1",
        fallback_email="sam@example.com",
        fallback_name="Sam Seller",
        fields=listing_fields(listing_input()),
    )

    assert ok is True
    assert email_sender.sent[0].to_email == "owner@example.com"
    assert email_sender.sent[0].to_name == "Olivia Owner"


async def test_unknown_identity_falls_back_to_contact_details(db_session, email_sender):
    await notify(
        db_session,
        email_sender,
        NotificationEvent.SUBMITTED_PENDING,
        external_id="sub-nobody",
        fallback_email="sam@example.com",
        fallback_name="Sam Seller",
        fields=listing_fields(listing_input()),
    )

    assert email_sender.sent[0].to_email == "sam@example.com"
    assert "Dear Sam Seller," in email_sender.sent[0].text


async def test_unconfigured_sendgrid_refuses_to_send():
    sender = SendGridEmailSender(api_key=None, from_email="noreply@example.com")
    message = EmailMessage(to_email="a@example.com", to_name="A", subject="s", html="<p>h</p>", text="t")

    with pytest.raises(EmailSendError):
        await sender.send(message)
