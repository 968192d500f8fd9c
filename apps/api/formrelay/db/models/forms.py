"""Form template, issued form and response models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formrelay.db.base import Base
from formrelay.db.enums import FormStatus, SubmissionOrigin

if TYPE_CHECKING:
    from formrelay.db.models.cases import Case


class FormTemplate(Base):
    """Reusable field schema forms are issued from."""

    __tablename__ = "form_templates"
    __table_args__ = (Index("idx_form_templates_active", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Ordered list of field specs: {id, label, type, required, options, placeholder}
    fields: Mapped[list] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    usage_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    forms: Mapped[list["Form"]] = relationship(back_populates="template")


class Form(Base):
    """One template instance issued to one candidate, addressed by token."""

    __tablename__ = "forms"
    __table_args__ = (
        Index("idx_forms_status_expires", "status", "expires_at"),
        Index("idx_forms_issuer_provider", "issuer_email", "provider"),
        Index("idx_forms_case", "case_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("form_templates.id", ondelete="SET NULL"), nullable=True
    )
    case_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="SET NULL"), nullable=True
    )
    # Frozen copy of the template fields at issue time
    fields: Mapped[list] = mapped_column(JSON, nullable=False)

    candidate_email: Mapped[str] = mapped_column(String(255), nullable=False)
    candidate_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issuer_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Recorded when the form is sent
    provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reply_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    send_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    delivery_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    delivery_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=FormStatus.CREATED.value,
        server_default=text(f"'{FormStatus.CREATED.value}'"),
        nullable=False,
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    template: Mapped[FormTemplate | None] = relationship(back_populates="forms")
    case: Mapped["Case | None"] = relationship(foreign_keys=[case_id])
    response: Mapped["FormResponse | None"] = relationship(back_populates="form", uselist=False)


class FormResponse(Base):
    """Answers recorded against a completed form (exactly one per token)."""

    __tablename__ = "form_responses"
    __table_args__ = (
        Index("idx_form_responses_processed", "processed"),
        Index("idx_form_responses_case", "case_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    form_token: Mapped[str] = mapped_column(
        String(64), ForeignKey("forms.token", ondelete="CASCADE"), unique=True, nullable=False
    )
    answers: Mapped[dict] = mapped_column(JSON, nullable=False)
    origin: Mapped[str] = mapped_column(
        String(10), default=SubmissionOrigin.WEB.value, nullable=False
    )
    source_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)

    # Candidate profile extracted from the answers
    candidate_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    candidate_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    candidate_profile: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    processed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    processed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    case_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="SET NULL"), nullable=True
    )

    form: Mapped[Form] = relationship(back_populates="response")
