"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database, rebuilt for every test
- Session factory shared with the scheduler and concurrency tests
- HTTPX AsyncClient bound to the app with the test session
- Template, case and form factories
"""
import os
import tempfile
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

_DB_DIR = tempfile.mkdtemp(prefix="formrelay-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENV"] = "test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

import formrelay.db.models  # noqa: F401
from formrelay.core.deps import get_db
from formrelay.db.base import Base
from formrelay.db.models import Case, Form, FormTemplate
from formrelay.db.session import SessionLocal, engine
from formrelay.main import app
from formrelay.services import case_service, form_service, form_template_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def session_factory():
    """
    Fresh schema per test.

    Services commit and the scheduler opens its own sessions, so tests run
    against a real file database instead of a rolled-back transaction.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Domain Fixtures
# =============================================================================

SIMPLE_FIELDS = [
    {"id": "name", "label": "Full Name", "type": "text", "required": True},
    {"id": "email", "label": "Email", "type": "email", "required": True},
    {"id": "phone", "label": "Phone", "type": "tel", "required": False},
]


@pytest.fixture
def template(db: Session) -> FormTemplate:
    return form_template_service.create_template(
        db, name="Quick Intake", fields=SIMPLE_FIELDS, created_by="recruiter@agency.com"
    )


@pytest.fixture
def default_template(db: Session) -> FormTemplate:
    return form_template_service.ensure_default_template(db)


@pytest.fixture
def case(db: Session) -> Case:
    return case_service.create_case(
        db,
        candidate_name="Jane Doe",
        candidate_email="jane@example.com",
        actor="recruiter@agency.com",
    )


@pytest.fixture
def form(db: Session, template: FormTemplate) -> Form:
    return form_service.issue_form(
        db,
        template_id=template.id,
        candidate_email="jane@example.com",
        candidate_name="Jane Doe",
        issuer_email="recruiter@agency.com",
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for the API with ``get_db`` bound to the test session."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Actor": "recruiter@agency.com"},
    ) as c:
        yield c

    app.dependency_overrides.clear()
