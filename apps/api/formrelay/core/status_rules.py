"""Status tables for forms and cases.

These tables are the only place allowed moves are defined; services consult
them through the helpers below instead of re-deriving rules inline.
"""

from formrelay.db.enums import CaseStatus, FormStatus, VerificationCheck

# =============================================================================
# Forms
# =============================================================================

# Forward-only order of persisted form states. EXPIRED is derived, never stored.
FORM_STATUS_ORDER: dict[FormStatus, int] = {
    FormStatus.CREATED: 0,
    FormStatus.SENT: 1,
    FormStatus.OPENED: 2,
    FormStatus.COMPLETED: 3,
}

# States from which a form may still be completed.
FORM_OPEN_STATUSES: tuple[FormStatus, ...] = (
    FormStatus.CREATED,
    FormStatus.SENT,
    FormStatus.OPENED,
)

# States the reconciliation job polls mailboxes for.
FORM_AWAITING_REPLY_STATUSES: tuple[FormStatus, ...] = (
    FormStatus.SENT,
    FormStatus.OPENED,
)

FORM_TERMINAL_STATUSES: frozenset[FormStatus] = frozenset(
    {FormStatus.COMPLETED, FormStatus.EXPIRED}
)


def is_form_advance(current: FormStatus, target: FormStatus) -> bool:
    """True when ``target`` lies strictly ahead of ``current``."""
    if current in FORM_TERMINAL_STATUSES:
        return False
    return FORM_STATUS_ORDER[target] > FORM_STATUS_ORDER[current]


# =============================================================================
# Cases
# =============================================================================

CASE_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.INTAKE: frozenset({CaseStatus.VERIFICATION_PENDING, CaseStatus.ON_HOLD}),
    CaseStatus.VERIFICATION_PENDING: frozenset(
        {CaseStatus.VERIFICATION_IN_PROGRESS, CaseStatus.ON_HOLD}
    ),
    CaseStatus.VERIFICATION_IN_PROGRESS: frozenset(
        {CaseStatus.VERIFIED, CaseStatus.VERIFICATION_PENDING, CaseStatus.ON_HOLD}
    ),
    CaseStatus.VERIFIED: frozenset({CaseStatus.SEARCHING, CaseStatus.ON_HOLD}),
    CaseStatus.SEARCHING: frozenset({CaseStatus.SHORTLISTED, CaseStatus.ON_HOLD}),
    CaseStatus.SHORTLISTED: frozenset(
        {CaseStatus.SUBMITTED, CaseStatus.SEARCHING, CaseStatus.ON_HOLD}
    ),
    CaseStatus.SUBMITTED: frozenset(
        {CaseStatus.PLACED, CaseStatus.SHORTLISTED, CaseStatus.ON_HOLD}
    ),
    CaseStatus.ON_HOLD: frozenset(
        {CaseStatus.INTAKE, CaseStatus.SEARCHING, CaseStatus.CLOSED}
    ),
    CaseStatus.PLACED: frozenset({CaseStatus.CLOSED}),
    CaseStatus.CLOSED: frozenset(),
}

# Statuses after which the SLA clock no longer matters.
CASE_SLA_EXEMPT_STATUSES: frozenset[CaseStatus] = frozenset(
    {CaseStatus.PLACED, CaseStatus.CLOSED}
)

# Checks that must all be verified before a case moves to VERIFIED on its own.
VERIFICATION_GATE: tuple[VerificationCheck, ...] = (
    VerificationCheck.LINKEDIN,
    VerificationCheck.EDUCATION,
    VerificationCheck.EXPERIENCE,
)

# Path walked (one legal edge at a time) when the gate is satisfied.
VERIFICATION_PATH: tuple[CaseStatus, ...] = (
    CaseStatus.INTAKE,
    CaseStatus.VERIFICATION_PENDING,
    CaseStatus.VERIFICATION_IN_PROGRESS,
    CaseStatus.VERIFIED,
)


def allowed_case_transitions(current: CaseStatus) -> list[CaseStatus]:
    return sorted(CASE_TRANSITIONS[current], key=lambda status: status.value)


def is_case_transition_allowed(current: CaseStatus, target: CaseStatus) -> bool:
    return target in CASE_TRANSITIONS[current]


def remaining_verification_path(current: CaseStatus) -> list[CaseStatus]:
    """Statuses to step through to reach VERIFIED, or [] when not on the path."""
    if current not in VERIFICATION_PATH[:-1]:
        return []
    index = VERIFICATION_PATH.index(current)
    return list(VERIFICATION_PATH[index + 1 :])
