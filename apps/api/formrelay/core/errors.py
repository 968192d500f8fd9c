"""Domain errors raised by the form, credential and case services.

Each error carries a stable ``code`` and the HTTP status the API renders it
with, so routers never translate them by hand.
"""

from __future__ import annotations


class FormRelayError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(FormRelayError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class FormExpiredError(FormRelayError):
    status_code = 410
    code = "expired"
    default_message = "This form has expired"


class AlreadyCompletedError(FormRelayError):
    status_code = 409
    code = "already_completed"
    default_message = "This form has already been submitted"


class TemplateInactiveError(FormRelayError):
    status_code = 409
    code = "template_inactive"
    default_message = "Template is inactive"


class ValidationFailedError(FormRelayError):
    """Validation failure listing every offending field."""

    status_code = 422
    code = "validation_failed"
    default_message = "Validation failed"

    def __init__(self, field_errors: dict[str, str], message: str | None = None):
        self.field_errors = dict(field_errors)
        super().__init__(message)


class InvalidTransitionError(FormRelayError):
    status_code = 409
    code = "invalid_transition"
    default_message = "Transition not allowed"


class InvalidSignatureError(FormRelayError):
    status_code = 401
    code = "invalid_signature"
    default_message = "Invalid webhook signature"


class TokenRefreshFailedError(FormRelayError):
    status_code = 502
    code = "token_refresh_failed"
    default_message = "OAuth token refresh failed"


class ProviderUnavailableError(FormRelayError):
    status_code = 502
    code = "provider_unavailable"
    default_message = "Mail provider unavailable"


class MessageUnavailableError(ProviderUnavailableError):
    """The provider rejected a request about one message or query, not the mailbox."""

    default_message = "Mail provider rejected the request"
