"""OAuth credentials for connected mailboxes."""

import uuid
from datetime import datetime

from sqlalchemy import String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from formrelay.db.base import Base


class OAuthCredential(Base):
    """
    Per-(identity, provider) OAuth credential.

    Access and refresh tokens are Fernet-encrypted at rest; read them only
    through the credential vault.
    """

    __tablename__ = "oauth_credentials"
    __table_args__ = (
        UniqueConstraint("identity", "provider", name="uq_oauth_credentials_identity_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    scopes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_refreshed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
