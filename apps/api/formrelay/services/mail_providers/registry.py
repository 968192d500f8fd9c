"""Gateway lookup by provider."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import httpx

from formrelay.core.config import settings
from formrelay.db.enums import MailProvider
from formrelay.services.mail_providers.base import MailProviderGateway
from formrelay.services.mail_providers.gmail import GmailGateway
from formrelay.services.mail_providers.outlook import OutlookGateway

_GATEWAYS: dict[str, type] = {
    MailProvider.GOOGLE.value: GmailGateway,
    MailProvider.MICROSOFT.value: OutlookGateway,
}


def get_gateway_class(provider: MailProvider | str) -> type:
    key = provider.value if isinstance(provider, MailProvider) else str(provider)
    gateway_class = _GATEWAYS.get(key)
    if gateway_class is None:
        raise ValueError(f"Unsupported mail provider: {provider}")
    return gateway_class


@contextmanager
def open_gateway(
    provider: MailProvider | str,
    access_token: str,
    *,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> Iterator[MailProviderGateway]:
    """Gateway for ``provider`` bound to a client that carries the provider timeout."""
    gateway_class = get_gateway_class(provider)
    with httpx.Client(
        timeout=timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS,
        transport=transport,
    ) as client:
        yield gateway_class(client, access_token)
