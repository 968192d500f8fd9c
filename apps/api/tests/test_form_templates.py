import pytest

from formrelay.core.errors import NotFoundError, TemplateInactiveError, ValidationFailedError
from formrelay.services import form_service, form_template_service


def test_validate_fields_collects_every_problem():
    errors = form_template_service.validate_fields(
        [
            {"id": "name", "label": "Name", "type": "text"},
            {"id": "name", "label": "", "type": "select"},
            {"id": "", "label": "Color", "type": "rainbow"},
            {"id": "notes", "label": "Notes", "type": "text", "options": ["a"]},
        ]
    )

    assert errors == {
        "fields[1].id": "duplicate id",
        "fields[1].label": "required",
        "fields[1].options": "required for select fields",
        "fields[2].id": "required",
        "fields[2].type": "invalid type",
        "fields[3].options": "only allowed for select, radio and checkbox fields",
    }


def test_validate_fields_rejects_empty_list():
    assert form_template_service.validate_fields([]) == {"fields": "at least one field is required"}


def test_default_template_fields_are_valid():
    assert form_template_service.validate_fields(form_template_service.DEFAULT_TEMPLATE_FIELDS) == {}


def test_create_template_rejects_invalid_fields(db):
    with pytest.raises(ValidationFailedError) as exc_info:
        form_template_service.create_template(
            db, name="Broken", fields=[{"id": "x", "label": "X", "type": "radio"}]
        )

    assert exc_info.value.field_errors == {"fields[0].options": "required for radio fields"}


def test_ensure_default_template_is_idempotent(db):
    first = form_template_service.ensure_default_template(db)
    second = form_template_service.ensure_default_template(db)

    assert first.id == second.id
    assert first.is_default is True
    assert first.name == form_template_service.DEFAULT_TEMPLATE_NAME
    assert [field["id"] for field in first.fields][:3] == ["name", "email", "phone"]


def test_only_one_default_template(db, default_template):
    other = form_template_service.create_template(
        db,
        name="Engineering Intake",
        fields=[{"id": "name", "label": "Name", "type": "text", "required": True}],
        is_default=True,
    )
    db.refresh(default_template)

    assert other.is_default is True
    assert default_template.is_default is False


def test_fields_locked_once_template_issued(db, template, form):
    db.refresh(template)
    assert template.usage_count == 1

    with pytest.raises(ValidationFailedError) as exc_info:
        form_template_service.update_template(
            db,
            template,
            fields=[{"id": "name", "label": "Name", "type": "text", "required": True}],
        )
    assert "fields" in exc_info.value.field_errors

    renamed = form_template_service.update_template(db, template, name="Renamed Intake")
    assert renamed.name == "Renamed Intake"


def test_clone_template_copies_fields_without_usage(db, template, form):
    clone = form_template_service.clone_template(db, template, created_by="lead@agency.com")

    assert clone.id != template.id
    assert clone.fields == template.fields
    assert clone.usage_count == 0
    assert clone.name == "Quick Intake (copy)"


def test_deactivated_template_cannot_issue(db, template):
    form_template_service.deactivate_template(db, template)

    with pytest.raises(TemplateInactiveError):
        form_service.issue_form(
            db,
            template_id=template.id,
            candidate_email="jane@example.com",
            issuer_email="recruiter@agency.com",
        )
    assert template not in form_template_service.list_templates(db)
    assert template in form_template_service.list_templates(db, include_inactive=True)


def test_get_template_not_found(db):
    import uuid

    with pytest.raises(NotFoundError):
        form_template_service.get_template(db, uuid.uuid4())


async def test_template_api_create_and_lock(client):
    res = await client.post(
        "/form-templates",
        json={
            "name": "API Intake",
            "fields": [
                {"id": "name", "label": "Full Name", "type": "text", "required": True},
                {"id": "visa", "label": "Visa", "type": "radio", "options": ["H1B", "GC"]},
            ],
        },
    )
    assert res.status_code == 201
    template_id = res.json()["id"]

    res = await client.post(
        "/form-templates",
        json={"name": "Bad", "fields": [{"id": "a", "label": "A", "type": "select"}]},
    )
    assert res.status_code == 422
    assert res.json()["code"] == "validation_failed"
    assert res.json()["field_errors"] == {"fields[0].options": "required for select fields"}

    res = await client.delete(f"/form-templates/{template_id}")
    assert res.status_code == 200
    assert res.json()["is_active"] is False
