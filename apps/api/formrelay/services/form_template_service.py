"""Form template service - reusable field schemas forms are issued from."""

from __future__ import annotations

import copy
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formrelay.core.errors import NotFoundError, ValidationFailedError
from formrelay.db.enums import FieldType
from formrelay.db.models import Form, FormTemplate

logger = logging.getLogger(__name__)

VALID_FIELD_TYPES = {field_type.value for field_type in FieldType}
OPTION_FIELD_TYPES = {
    FieldType.SELECT.value,
    FieldType.RADIO.value,
    FieldType.CHECKBOX.value,
}

DEFAULT_TEMPLATE_NAME = "Candidate Information"
DEFAULT_TEMPLATE_FIELDS: list[dict[str, Any]] = [
    {"id": "name", "label": "Full Name", "type": "text", "required": True},
    {"id": "email", "label": "Email", "type": "email", "required": True},
    {"id": "phone", "label": "Phone", "type": "tel", "required": True},
    {"id": "linkedIn", "label": "LinkedIn Profile", "type": "url", "required": False},
    {"id": "location", "label": "Current Location", "type": "text", "required": True},
    {
        "id": "visa",
        "label": "Visa Status",
        "type": "select",
        "required": True,
        "options": ["H1B", "OPT-EAD", "GC-EAD", "Green Card", "US Citizen"],
    },
    {
        "id": "experience",
        "label": "Years of Experience",
        "type": "select",
        "required": True,
        "options": ["0-2 years", "2-5 years", "5-8 years", "8-10 years", "10+ years"],
    },
    {"id": "skills", "label": "Technical Skills", "type": "textarea", "required": True},
    {
        "id": "education",
        "label": "Highest Education",
        "type": "select",
        "required": True,
        "options": ["High School", "Associate", "Bachelor", "Master", "PhD"],
    },
    {
        "id": "availability",
        "label": "Availability",
        "type": "select",
        "required": True,
        "options": ["Immediate", "2 weeks", "1 month", "More than 1 month"],
    },
]


# =============================================================================
# Field validation
# =============================================================================


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_fields(fields: Any) -> dict[str, str]:
    """
    Validate a template field list.

    Returns every problem found, keyed by location (``fields[2].options``),
    so the caller can report them all at once. An empty dict means valid.
    """
    if not isinstance(fields, list) or not fields:
        return {"fields": "at least one field is required"}

    errors: dict[str, str] = {}
    seen_ids: set[str] = set()
    for index, field in enumerate(fields):
        prefix = f"fields[{index}]"
        if not isinstance(field, dict):
            errors[prefix] = "must be an object"
            continue

        field_id = field.get("id")
        if _is_blank(field_id):
            errors[f"{prefix}.id"] = "required"
        elif field_id.strip() in seen_ids:
            errors[f"{prefix}.id"] = "duplicate id"
        else:
            seen_ids.add(field_id.strip())

        if _is_blank(field.get("label")):
            errors[f"{prefix}.label"] = "required"

        field_type = field.get("type")
        if field_type not in VALID_FIELD_TYPES:
            errors[f"{prefix}.type"] = "invalid type"

        required = field.get("required", False)
        if not isinstance(required, bool):
            errors[f"{prefix}.required"] = "must be a boolean"

        options = field.get("options")
        if field_type in OPTION_FIELD_TYPES:
            if (
                not isinstance(options, list)
                or not options
                or any(_is_blank(option) for option in options)
            ):
                errors[f"{prefix}.options"] = f"required for {field_type} fields"
            elif len({option.strip() for option in options}) != len(options):
                errors[f"{prefix}.options"] = "duplicate option"
        elif options:
            errors[f"{prefix}.options"] = "only allowed for select, radio and checkbox fields"

    return errors


def normalize_fields(fields: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Canonical stored shape of a validated field list."""
    normalized = []
    for field in fields:
        item: dict[str, Any] = {
            "id": field["id"].strip(),
            "label": field["label"].strip(),
            "type": field["type"],
            "required": bool(field.get("required", False)),
        }
        if field["type"] in OPTION_FIELD_TYPES:
            item["options"] = [option.strip() for option in field["options"]]
        if field.get("placeholder"):
            item["placeholder"] = str(field["placeholder"])
        normalized.append(item)
    return normalized


# =============================================================================
# Template CRUD
# =============================================================================


def create_template(
    db: Session,
    *,
    name: str,
    fields: Any,
    description: str | None = None,
    is_default: bool = False,
    created_by: str | None = None,
) -> FormTemplate:
    """Create a template after validating every field."""
    errors = validate_fields(fields)
    if _is_blank(name):
        errors["name"] = "required"
    if errors:
        raise ValidationFailedError(errors)

    if is_default:
        _clear_default(db)

    template = FormTemplate(
        name=name.strip(),
        description=description,
        fields=normalize_fields(fields),
        is_active=True,
        is_default=is_default,
        usage_count=0,
        created_by=created_by,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info("Form template created", extra={"template_id": str(template.id)})
    return template


def get_template(db: Session, template_id: UUID) -> FormTemplate:
    template = db.get(FormTemplate, template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


def list_templates(db: Session, *, include_inactive: bool = False) -> list[FormTemplate]:
    query = db.query(FormTemplate)
    if not include_inactive:
        query = query.filter(FormTemplate.is_active.is_(True))
    return query.order_by(FormTemplate.is_default.desc(), FormTemplate.name.asc()).all()


def is_template_referenced(db: Session, template_id: UUID) -> bool:
    return (
        db.query(Form.id).filter(Form.template_id == template_id).limit(1).first()
        is not None
    )


def update_template(
    db: Session,
    template: FormTemplate,
    *,
    name: str | None = None,
    description: str | None = None,
    fields: Any = None,
    is_active: bool | None = None,
    is_default: bool | None = None,
) -> FormTemplate:
    """
    Update template metadata or fields.

    Fields are frozen once any form has been issued from the template; clone
    the template to change them.
    """
    errors: dict[str, str] = {}
    if name is not None and _is_blank(name):
        errors["name"] = "required"
    if fields is not None:
        if template.usage_count > 0 or is_template_referenced(db, template.id):
            errors["fields"] = "template has issued forms; clone it to change fields"
        else:
            errors.update(validate_fields(fields))
    if errors:
        raise ValidationFailedError(errors)

    if name is not None:
        template.name = name.strip()
    if description is not None:
        template.description = description
    if fields is not None:
        template.fields = normalize_fields(fields)
    if is_active is not None:
        template.is_active = is_active
    if is_default:
        _clear_default(db, keep_id=template.id)
        template.is_default = True
    elif is_default is False:
        template.is_default = False

    db.commit()
    db.refresh(template)
    return template


def clone_template(
    db: Session,
    template: FormTemplate,
    *,
    name: str | None = None,
    created_by: str | None = None,
) -> FormTemplate:
    """Copy a template's fields into a new, unreferenced template."""
    clone = FormTemplate(
        name=(name or f"{template.name} (copy)").strip(),
        description=template.description,
        fields=copy.deepcopy(template.fields),
        is_active=True,
        is_default=False,
        usage_count=0,
        created_by=created_by,
    )
    db.add(clone)
    db.commit()
    db.refresh(clone)
    return clone


def deactivate_template(db: Session, template: FormTemplate) -> FormTemplate:
    """Soft delete: inactive templates cannot issue new forms."""
    template.is_active = False
    template.is_default = False
    db.commit()
    db.refresh(template)
    return template


def increment_usage(db: Session, template_id: UUID) -> None:
    """
    Bump the template usage counter.

    Runs in a savepoint so a failure never blocks issuing the form.
    """
    try:
        with db.begin_nested():
            db.execute(
                update(FormTemplate)
                .where(FormTemplate.id == template_id)
                .values(usage_count=FormTemplate.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError:
        logger.warning(
            "Template usage increment failed",
            extra={"template_id": str(template_id)},
            exc_info=True,
        )


def ensure_default_template(db: Session) -> FormTemplate:
    """Return the default template, creating the candidate information one if missing."""
    template = (
        db.query(FormTemplate)
        .filter(FormTemplate.is_default.is_(True), FormTemplate.is_active.is_(True))
        .first()
    )
    if template:
        return template
    return create_template(
        db,
        name=DEFAULT_TEMPLATE_NAME,
        description="Standard candidate intake form",
        fields=copy.deepcopy(DEFAULT_TEMPLATE_FIELDS),
        is_default=True,
        created_by="system",
    )


def _clear_default(db: Session, keep_id: UUID | None = None) -> None:
    query = db.query(FormTemplate).filter(FormTemplate.is_default.is_(True))
    if keep_id is not None:
        query = query.filter(FormTemplate.id != keep_id)
    for template in query.all():
        template.is_default = False
