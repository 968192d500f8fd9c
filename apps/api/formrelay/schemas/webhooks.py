"""Schemas for inbound webhooks."""

from typing import Any

from pydantic import BaseModel, Field

from formrelay.db.enums import MailProvider


class WebhookFormSubmission(BaseModel):
    token: str = Field(..., min_length=1)
    answers: Any


class WebhookStatusUpdate(BaseModel):
    token: str = Field(..., min_length=1)
    status: str
    provider: MailProvider | None = None


class WebhookEventsResult(BaseModel):
    processed: int
    ignored: int
    errors: list[str]


class WebhookStatusResult(BaseModel):
    token: str
    status: str
