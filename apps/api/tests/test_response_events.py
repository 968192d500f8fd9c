import logging

from formrelay.db.models import FormResponse
from formrelay.services import response_events, response_service
from formrelay.services.response_events import ResponseEvents


def test_handler_failure_does_not_undo_submission(db, form, caplog):
    def _broken(db, response):
        raise RuntimeError("downstream outage")

    events = ResponseEvents().with_handler(_broken)
    with caplog.at_level(logging.ERROR, logger="formrelay.services.response_events"):
        response = response_service.submit(
            db, form.token, {"name": "Jane Doe", "email": "jane@example.com"}, events=events
        )

    assert db.query(FormResponse).filter(FormResponse.id == response.id).count() == 1
    assert "ResponseReceived handler failed" in caplog.text


def test_handlers_receive_committed_response(db, form):
    received = []

    def _capture(db, response):
        received.append((response.form_token, response.origin))

    response_service.submit(
        db,
        form.token,
        {"name": "Jane Doe", "email": "jane@example.com"},
        events=ResponseEvents([_capture]),
    )

    assert received == [(form.token, "web")]


def test_extra_handler_does_not_change_the_default_set():
    def _extra(db, response):
        pass

    extended = response_events.DEFAULT_RESPONSE_EVENTS.with_handler(_extra)

    assert _extra in extended.handlers
    assert _extra not in response_events.DEFAULT_RESPONSE_EVENTS.handlers
    assert response_events.DEFAULT_RESPONSE_EVENTS.handlers == response_events.DEFAULT_HANDLERS
    assert extended.with_handler(_extra) is extended
