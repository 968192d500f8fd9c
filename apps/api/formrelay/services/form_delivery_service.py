"""Form delivery - sends form invitations from the issuer's connected mailbox."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, ContextManager

from sqlalchemy.orm import Session

from formrelay.core.config import settings
from formrelay.core.errors import InvalidTransitionError
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import CaseActivityType, MailProvider
from formrelay.db.models import Form
from formrelay.services import activity_service, form_service
from formrelay.services.mail_providers import MailProviderGateway, open_gateway
from formrelay.services.oauth_service import CredentialVault, get_credential_vault

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str, str], ContextManager[MailProviderGateway]]

INVITATION_BODY = """Hi {name},

Please take a few minutes to complete your information for our records:

{link}

If you prefer, you can reply to this email instead, one answer per line, for example:

{example}

This link expires on {expires}.

Thank you,
{issuer}
"""


def compose_invitation(form: Form) -> tuple[str, str]:
    """Subject and plain-text body for a form invitation."""
    example = "\n".join(f"{field['label']}: ..." for field in form.fields[:3])
    body = INVITATION_BODY.format(
        name=form.candidate_name or "there",
        link=form_service.build_form_link(form.token),
        example=example,
        expires=form.expires_at.strftime("%B %d, %Y"),
        issuer=form.issuer_email,
    )
    return settings.FORM_EMAIL_SUBJECT, body


def _deliver(
    db: Session,
    form: Form,
    provider: MailProvider,
    *,
    vault: CredentialVault,
    gateway_factory: GatewayFactory,
) -> str | None:
    access_token = vault.get_valid_token(db, form.issuer_email, provider)
    subject, body = compose_invitation(form)
    with gateway_factory(provider.value, access_token) as gateway:
        return gateway.send_message(to=form.candidate_email, subject=subject, body=body)


def send_form(
    db: Session,
    token: str,
    *,
    provider: MailProvider | str,
    actor: str | None = None,
    vault: CredentialVault | None = None,
    gateway_factory: GatewayFactory = open_gateway,
    now: datetime | None = None,
) -> Form:
    """
    Email the form link through the issuer's mailbox and mark the form sent.

    The provider is recorded on the form; reconciliation later polls the same
    mailbox for the candidate's reply.
    """
    provider = MailProvider(provider)
    form = form_service.resolve(db, token, now=now)
    message_id = _deliver(
        db,
        form,
        provider,
        vault=vault or get_credential_vault(),
        gateway_factory=gateway_factory,
    )
    form = form_service.mark_sent(
        db,
        token,
        provider=provider,
        reply_subject=settings.FORM_REPLY_SUBJECT_FRAGMENT,
        message_id=message_id,
        now=now,
    )
    if form.case_id is not None:
        activity_service.log_activity(
            db,
            form.case_id,
            CaseActivityType.FORM_SENT,
            actor=actor,
            details={"form_id": str(form.id), "provider": provider.value},
            now=now,
        )
    db.commit()
    db.refresh(form)
    logger.info(
        "Form sent",
        extra=build_log_context(
            form_token=token, mailbox=form.issuer_email, provider=provider.value
        ),
    )
    return form


def resend_form(
    db: Session,
    token: str,
    *,
    actor: str | None = None,
    vault: CredentialVault | None = None,
    gateway_factory: GatewayFactory = open_gateway,
    now: datetime | None = None,
) -> Form:
    """Send an outstanding form again through the provider it was first sent with."""
    form = form_service.resolve(db, token, now=now)
    if not form.provider:
        raise InvalidTransitionError("Form has not been sent yet")
    provider = MailProvider(form.provider)
    message_id = _deliver(
        db,
        form,
        provider,
        vault=vault or get_credential_vault(),
        gateway_factory=gateway_factory,
    )
    form = form_service.mark_sent(
        db,
        token,
        provider=provider,
        reply_subject=form.reply_subject,
        message_id=message_id,
        now=now,
    )
    if form.case_id is not None:
        activity_service.log_activity(
            db,
            form.case_id,
            CaseActivityType.FORM_RESENT,
            actor=actor,
            details={"form_id": str(form.id), "send_count": form.send_count},
            now=now,
        )
    db.commit()
    db.refresh(form)
    return form
