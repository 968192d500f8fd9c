"""SQLAlchemy ORM models."""

from formrelay.db.models.cases import (
    Case,
    CaseActivity,
    CaseNote,
    CaseVerificationCheck,
)
from formrelay.db.models.forms import Form, FormResponse, FormTemplate
from formrelay.db.models.integrations import OAuthCredential

__all__ = [
    "Case",
    "CaseActivity",
    "CaseNote",
    "CaseVerificationCheck",
    "Form",
    "FormResponse",
    "FormTemplate",
    "OAuthCredential",
]
