"""FastAPI dependencies for database access and request context."""

from typing import Generator

from fastapi import Header
from sqlalchemy.orm import Session

from formrelay.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_actor: str | None = Header(default=None)) -> str | None:
    """Identity of the staff member acting on the request.

    Staff authentication is handled upstream; the gateway forwards the
    authenticated identity in ``X-Actor``.
    """
    if x_actor is None:
        return None
    actor = x_actor.strip()
    return actor or None


def get_reconciliation_scheduler():
    """Process-wide reconciliation scheduler (overridable in tests)."""
    from formrelay.services.reconciliation_service import get_scheduler

    return get_scheduler()


def get_credential_vault():
    """Process-wide credential vault (overridable in tests)."""
    from formrelay.services.oauth_service import get_credential_vault as _get_vault

    return _get_vault()
