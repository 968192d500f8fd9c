"""Signed inbound webhooks: delivery events, embedded submissions, status reports."""
import json

import pytest

from formrelay.core.config import settings
from formrelay.db.enums import CaseActivityType, FormStatus
from formrelay.db.models import FormResponse
from formrelay.services import activity_service, form_service, webhook_service

SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", SECRET)


async def _post_signed(client, path, payload, signature=None):
    body = json.dumps(payload).encode()
    if signature is None:
        signature = webhook_service.sign_payload(body, SECRET)
    return await client.post(
        path,
        content=body,
        headers={"Content-Type": "application/json", webhook_service.SIGNATURE_HEADER: signature},
    )


def _case_form(db, template, case):
    form = form_service.issue_form(
        db,
        template_id=template.id,
        candidate_email="jane@example.com",
        issuer_email="recruiter@agency.com",
        case_id=case.id,
    )
    form_service.mark_sent(db, form.token, provider="google")
    db.commit()
    return form


def test_signature_accepts_prefixed_hex_and_rejects_tampering():
    body = b'{"token": "abc"}'
    signature = webhook_service.sign_payload(body, SECRET)

    assert webhook_service.verify_signature(body, signature, SECRET)
    assert webhook_service.verify_signature(body, f"sha256={signature}", SECRET)
    assert not webhook_service.verify_signature(body + b" ", signature, SECRET)
    assert not webhook_service.verify_signature(body, None, SECRET)
    assert not webhook_service.verify_signature(body, signature, "")


async def test_bad_signature_is_rejected(client, db, form):
    res = await _post_signed(
        client, "/webhooks/status", {"token": form.token, "status": "opened"}, signature="00"
    )

    assert res.status_code == 401
    assert res.json()["code"] == "invalid_signature"
    db.refresh(form)
    assert form.status == FormStatus.CREATED.value


async def test_unconfigured_secret_rejects_every_call(client, form, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", "")
    body = json.dumps({"token": form.token, "status": "opened"}).encode()

    res = await client.post(
        "/webhooks/status",
        content=body,
        headers={webhook_service.SIGNATURE_HEADER: webhook_service.sign_payload(body, "")},
    )

    assert res.status_code == 401


async def test_open_event_marks_form_opened_and_logs_case_activity(client, db, template, case):
    form = _case_form(db, template, case)

    res = await _post_signed(
        client, "/webhooks/email-events", [{"event": "open", "form_token": form.token}]
    )

    assert res.status_code == 200, res.text
    assert res.json() == {"processed": 1, "ignored": 0, "errors": []}
    db.refresh(form)
    assert form.status == FormStatus.OPENED.value
    assert form.opened_at is not None
    activity_types = [a.activity_type for a in activity_service.list_activities(db, case.id)]
    assert activity_types.count(CaseActivityType.FORM_OPENED.value) == 1


async def test_open_event_on_completed_form_is_ignored(client, db, form):
    form_service.complete_form(db, form.token)
    db.commit()

    res = await _post_signed(
        client, "/webhooks/email-events", {"event": "click", "form_token": form.token}
    )

    assert res.json() == {"processed": 0, "ignored": 1, "errors": []}
    db.refresh(form)
    assert form.status == FormStatus.COMPLETED.value


async def test_bounce_records_failed_delivery_and_stays_failed(client, db, template, case):
    form = _case_form(db, template, case)
    events = [
        {"event": "bounce", "form_token": form.token},
        {"event": "delivered", "form_token": form.token},
        {"event": "processed", "form_token": form.token},
        {"event": "open", "form_token": "unknown-token"},
    ]

    res = await _post_signed(client, "/webhooks/email-events", events)

    assert res.json() == {"processed": 2, "ignored": 2, "errors": []}
    db.refresh(form)
    assert form.delivery_status == "failed"
    assert form.delivery_updated_at is not None
    activity_types = [a.activity_type for a in activity_service.list_activities(db, case.id)]
    assert CaseActivityType.FORM_DELIVERY_FAILED.value in activity_types

    res = await client.get(f"/forms/{form.token}")
    assert res.json()["delivery_status"] == "failed"


async def test_delivered_event_sets_delivery_status(client, db, form):
    await _post_signed(
        client, "/webhooks/email-events", {"event": "delivered", "form_token": form.token}
    )

    db.refresh(form)
    assert form.delivery_status == "delivered"


async def test_signed_submission_completes_form(client, db, form):
    payload = {"token": form.token, "answers": {"name": "Jane Doe", "email": "jane@example.com"}}

    res = await _post_signed(client, "/webhooks/form-submission", payload)

    assert res.status_code == 200, res.text
    assert res.json()["status"] == "completed"
    db.refresh(form)
    assert form.status == FormStatus.COMPLETED.value
    assert db.query(FormResponse).one().origin == "web"

    res = await _post_signed(client, "/webhooks/form-submission", payload)
    assert res.status_code == 409


async def test_signed_submission_is_validated(client, form):
    res = await _post_signed(
        client, "/webhooks/form-submission", {"token": form.token, "answers": {"name": "Jane"}}
    )
    assert res.status_code == 422
    assert res.json()["field_errors"] == {"email": "required"}

    res = await _post_signed(client, "/webhooks/form-submission", {"answers": {}})
    assert res.status_code == 422
    assert "token" in res.json()["field_errors"]


async def test_status_webhook_moves_form_forward(client, db, form):
    res = await _post_signed(
        client,
        "/webhooks/status",
        {"token": form.token, "status": "sent", "provider": "microsoft"},
    )
    assert res.status_code == 200, res.text
    assert res.json() == {"token": form.token, "status": "sent"}

    res = await _post_signed(client, "/webhooks/status", {"token": form.token, "status": "Opened"})
    assert res.json()["status"] == "opened"

    db.refresh(form)
    assert form.provider == "microsoft"
    assert form.opened_at is not None


async def test_status_webhook_rejects_other_statuses(client, form):
    res = await _post_signed(
        client, "/webhooks/status", {"token": form.token, "status": "completed"}
    )
    assert res.status_code == 409
    assert res.json()["code"] == "invalid_transition"

    res = await _post_signed(client, "/webhooks/status", {"token": form.token, "status": "sent"})
    assert res.status_code == 409

    res = await _post_signed(client, "/webhooks/status", {"token": "missing", "status": "opened"})
    assert res.status_code == 404
