"""Enum definitions for application constants."""

from formrelay.db.enums.cases import (
    CaseActivityType,
    CasePriority,
    CaseSource,
    CaseStatus,
    SlaState,
    VerificationCheck,
    VerificationStatus,
)
from formrelay.db.enums.forms import DeliveryStatus, FieldType, FormStatus, SubmissionOrigin
from formrelay.db.enums.integrations import MailProvider

__all__ = [
    "CaseActivityType",
    "CasePriority",
    "CaseSource",
    "CaseStatus",
    "DeliveryStatus",
    "FieldType",
    "FormStatus",
    "MailProvider",
    "SlaState",
    "SubmissionOrigin",
    "VerificationCheck",
    "VerificationStatus",
]
