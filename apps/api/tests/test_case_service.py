from datetime import datetime, timedelta, timezone

import pytest

from formrelay.core.errors import InvalidTransitionError, NotFoundError, ValidationFailedError
from formrelay.core.status_rules import CASE_TRANSITIONS, allowed_case_transitions
from formrelay.db.enums import (
    CaseActivityType,
    CasePriority,
    CaseStatus,
    SlaState,
    VerificationCheck,
    VerificationStatus,
)
from formrelay.services import activity_service, case_service


def _activity_types(db, case_id):
    return [activity.activity_type for activity in activity_service.list_activities(db, case_id)]


def test_create_case_sets_intake_and_sla(db):
    now = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)
    case = case_service.create_case(db, candidate_name="  Jane Doe ", now=now)

    assert case.status == CaseStatus.INTAKE.value
    assert case.candidate_name == "Jane Doe"
    assert case.case_number.startswith("CASE-")
    assert case.sla_deadline == now + timedelta(hours=72)
    assert case.verification_status == VerificationStatus.NOT_STARTED.value
    assert sorted(row.check_name for row in case.verification_checks) == sorted(
        check.value for check in VerificationCheck
    )
    assert _activity_types(db, case.id) == [CaseActivityType.CASE_CREATED.value]


def test_create_case_requires_name(db):
    with pytest.raises(ValidationFailedError):
        case_service.create_case(db, candidate_name="   ")


def test_intake_cannot_jump_to_placed(db, case):
    with pytest.raises(InvalidTransitionError):
        case_service.transition(db, case.id, CaseStatus.PLACED)

    db.refresh(case)
    assert case.status == CaseStatus.INTAKE.value
    assert _activity_types(db, case.id) == [CaseActivityType.CASE_CREATED.value]


def test_every_graph_edge_is_accepted_and_others_rejected():
    for current, targets in CASE_TRANSITIONS.items():
        for target in CaseStatus:
            allowed = target in targets
            assert (target in allowed_case_transitions(current)) is allowed


def test_walk_to_closed_sets_closed_at(db, case):
    for status in (
        CaseStatus.VERIFICATION_PENDING,
        CaseStatus.VERIFICATION_IN_PROGRESS,
        CaseStatus.VERIFIED,
        CaseStatus.SEARCHING,
        CaseStatus.SHORTLISTED,
        CaseStatus.SUBMITTED,
        CaseStatus.PLACED,
        CaseStatus.CLOSED,
    ):
        case = case_service.transition(db, case.id, status, actor="lead@agency.com")

    assert case.status == CaseStatus.CLOSED.value
    assert case.closed_at is not None
    with pytest.raises(InvalidTransitionError):
        case_service.transition(db, case.id, CaseStatus.INTAKE)


def test_gate_checks_auto_verify_case(db, case):
    for check in (VerificationCheck.LINKEDIN, VerificationCheck.EDUCATION):
        case = case_service.update_verification(db, case.id, check, True, actor="lead@agency.com")
        assert case.status == CaseStatus.INTAKE.value
    assert case.verification_status == VerificationStatus.IN_PROGRESS.value

    case = case_service.update_verification(
        db, case.id, VerificationCheck.EXPERIENCE, True, actor="lead@agency.com"
    )

    assert case.status == CaseStatus.VERIFIED.value
    assert case.verification_status == VerificationStatus.PARTIAL.value
    status_changes = [
        activity.details["to"]
        for activity in activity_service.list_activities(db, case.id)
        if activity.activity_type == CaseActivityType.STATUS_CHANGED.value
    ]
    assert sorted(status_changes) == ["verification_in_progress", "verification_pending", "verified"]

    case = case_service.update_verification(db, case.id, VerificationCheck.REFERENCES, True)
    assert case.verification_status == VerificationStatus.COMPLETED.value
    assert case.status == CaseStatus.VERIFIED.value


def test_auto_verify_does_not_pull_case_off_hold(db, case):
    case_service.transition(db, case.id, CaseStatus.ON_HOLD)
    for check in (VerificationCheck.LINKEDIN, VerificationCheck.EDUCATION, VerificationCheck.EXPERIENCE):
        case = case_service.update_verification(db, case.id, check, True)

    assert case.status == CaseStatus.ON_HOLD.value


def test_closed_case_rejects_verification(db, case):
    case_service.transition(db, case.id, CaseStatus.ON_HOLD)
    case_service.transition(db, case.id, CaseStatus.CLOSED)

    with pytest.raises(InvalidTransitionError):
        case_service.update_verification(db, case.id, VerificationCheck.LINKEDIN, True)


def test_unverifying_clears_audit_fields(db, case):
    case_service.update_verification(db, case.id, "linkedin", True, actor="lead@agency.com")
    case = case_service.update_verification(db, case.id, "linkedin", False, notes="wrong profile")

    summary = case_service.verification_summary(case)
    assert summary["linkedin"] == {
        "verified": False,
        "verified_at": None,
        "verified_by": None,
        "notes": "wrong profile",
    }


def test_sla_states(db):
    now = datetime.now(timezone.utc)
    case = case_service.create_case(db, candidate_name="Jane Doe", now=now)

    assert case_service.sla_status(case, now)["state"] == SlaState.ON_TRACK.value
    assert case_service.sla_status(case, now + timedelta(hours=50))["state"] == SlaState.AT_RISK.value
    breached = case_service.sla_status(case, now + timedelta(hours=72))
    assert breached["state"] == SlaState.BREACHED.value
    assert breached["breached"] is True


def test_sla_breach_recorded_once(db):
    now = datetime.now(timezone.utc)
    case = case_service.create_case(db, candidate_name="Jane Doe", now=now - timedelta(hours=80))

    assert case_service.record_sla_breach(db, case, now) is True
    assert case_service.record_sla_breach(db, case, now + timedelta(hours=1)) is False
    assert case.sla_breached is True
    assert _activity_types(db, case.id).count(CaseActivityType.SLA_BREACHED.value) == 1


def test_notes_priority_and_assignment(db, case):
    case_service.add_note(db, case.id, "Prefers remote roles", author="lead@agency.com")
    case = case_service.set_priority(db, case.id, CasePriority.HIGH, actor="lead@agency.com")
    case = case_service.assign_case(db, case.id, "sourcer@agency.com", actor="lead@agency.com")

    assert [note.body for note in case_service.list_notes(db, case.id)] == ["Prefers remote roles"]
    assert case.priority == CasePriority.HIGH.value
    assert case.assigned_to == "sourcer@agency.com"
    assert _activity_types(db, case.id)[1:] == [
        CaseActivityType.NOTE_ADDED.value,
        CaseActivityType.PRIORITY_CHANGED.value,
        CaseActivityType.ASSIGNED.value,
    ]


def test_unknown_case(db):
    import uuid

    with pytest.raises(NotFoundError):
        case_service.transition(db, uuid.uuid4(), CaseStatus.ON_HOLD)
