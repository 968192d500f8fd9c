"""Structured logging helpers (PII-safe).

Candidate and mailbox addresses never reach log records in clear text; use
``mask_email`` and ``build_log_context`` when logging about them.
"""

import hashlib
import logging
from typing import Any

from formrelay.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for worker and CLI processes."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def mask_email(email: str | None) -> str:
    """Return a stable, non-reversible label for an email address."""
    if not email:
        return ""
    local, _, domain = email.strip().lower().partition("@")
    digest = hashlib.sha256(email.strip().lower().encode()).hexdigest()[:10]
    prefix = local[:2] if local else ""
    return f"{prefix}***@{domain}#{digest}" if domain else f"{prefix}***#{digest}"


def token_prefix(token: str | None) -> str:
    if not token:
        return ""
    return f"{token[:8]}..."


def build_log_context(
    *,
    form_token: str | None = None,
    mailbox: str | None = None,
    provider: str | None = None,
    case_id: Any = None,
    cycle_id: str | None = None,
    origin: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for ``extra=``."""
    context: dict[str, Any] = {}
    if form_token:
        context["form_token"] = token_prefix(form_token)
    if mailbox:
        context["mailbox"] = mask_email(mailbox)
    if provider:
        context["provider"] = provider
    if case_id:
        context["case_id"] = str(case_id)
    if cycle_id:
        context["cycle_id"] = cycle_id
    if origin:
        context["origin"] = origin
    return context
