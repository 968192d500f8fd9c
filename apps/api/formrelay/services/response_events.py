"""ResponseReceived event dispatch.

Handlers run after the response is committed. A failing handler is logged and
never undoes the submission; staff can re-run case creation from the
responses API. The handler set is fixed per ``ResponseEvents`` instance, and
callers that need extra side effects pass their own instance to ``submit``.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from formrelay.core.structured_logging import build_log_context
from formrelay.db.models import FormResponse

logger = logging.getLogger(__name__)

ResponseHandler = Callable[[Session, FormResponse], None]


def project_case(db: Session, response: FormResponse) -> None:
    from formrelay.services import case_service

    case_service.project_response(db, response)


def notify_staff(db: Session, response: FormResponse) -> None:
    # Push delivery lives in the UI layer; the record line is what it tails.
    logger.info(
        "Notification: form response received",
        extra={
            **build_log_context(
                form_token=response.form_token,
                case_id=response.case_id,
                origin=response.origin,
            ),
            "response_id": str(response.id),
        },
    )


DEFAULT_HANDLERS: tuple[ResponseHandler, ...] = (project_case, notify_staff)


class ResponseEvents:
    """An immutable set of ResponseReceived handlers."""

    def __init__(self, handlers: Iterable[ResponseHandler] = DEFAULT_HANDLERS):
        self._handlers = tuple(handlers)

    @property
    def handlers(self) -> tuple[ResponseHandler, ...]:
        return self._handlers

    def with_handler(self, handler: ResponseHandler) -> ResponseEvents:
        """A copy that also delivers to ``handler``."""
        if handler in self._handlers:
            return self
        return ResponseEvents((*self._handlers, handler))

    def publish_response_received(self, db: Session, response: FormResponse) -> None:
        """Deliver ResponseReceived to every handler, isolating failures."""
        for handler in self._handlers:
            try:
                handler(db, response)
            except Exception:
                db.rollback()
                logger.exception(
                    "ResponseReceived handler failed",
                    extra={
                        **build_log_context(form_token=response.form_token),
                        "handler": getattr(handler, "__name__", repr(handler)),
                    },
                )


DEFAULT_RESPONSE_EVENTS = ResponseEvents()
