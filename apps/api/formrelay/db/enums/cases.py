"""Case-related enums."""

from enum import Enum


class CaseStatus(str, Enum):
    """Recruiting case pipeline. Allowed moves live in core.status_rules."""

    INTAKE = "intake"
    VERIFICATION_PENDING = "verification_pending"
    VERIFICATION_IN_PROGRESS = "verification_in_progress"
    VERIFIED = "verified"
    SEARCHING = "searching"
    SHORTLISTED = "shortlisted"
    SUBMITTED = "submitted"
    ON_HOLD = "on_hold"
    PLACED = "placed"
    CLOSED = "closed"


class CasePriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CaseSource(str, Enum):
    MANUAL = "manual"
    FORM_RESPONSE = "form_response"


class VerificationCheck(str, Enum):
    LINKEDIN = "linkedin"
    EDUCATION = "education"
    EXPERIENCE = "experience"
    REFERENCES = "references"


class VerificationStatus(str, Enum):
    """Rollup of the four verification checks."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"  # gating checks done, references outstanding
    COMPLETED = "completed"


class SlaState(str, Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"


class CaseActivityType(str, Enum):
    CASE_CREATED = "case_created"
    STATUS_CHANGED = "status_changed"
    VERIFICATION_UPDATED = "verification_updated"
    NOTE_ADDED = "note_added"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"
    SLA_BREACHED = "sla_breached"
    FORM_ISSUED = "form_issued"
    FORM_SENT = "form_sent"
    FORM_RESENT = "form_resent"
    FORM_OPENED = "form_opened"
    FORM_DELIVERY_FAILED = "form_delivery_failed"
    RESPONSE_RECEIVED = "response_received"
