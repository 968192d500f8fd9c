"""Recruiting case models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formrelay.db.base import Base
from formrelay.db.enums import (
    CasePriority,
    CaseSource,
    CaseStatus,
    VerificationStatus,
)


class Case(Base):
    """
    Candidate case driven through the recruiting pipeline.

    ``status`` changes only through case_service.transition. Cases are never
    deleted; they end in ``closed``.
    """

    __tablename__ = "cases"
    __table_args__ = (
        Index("idx_cases_status", "status"),
        Index("idx_cases_sla", "sla_deadline"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    candidate_name: Mapped[str] = mapped_column(String(255), nullable=False)
    candidate_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    candidate_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    candidate_profile: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String(40),
        default=CaseStatus.INTAKE.value,
        server_default=text(f"'{CaseStatus.INTAKE.value}'"),
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default=CasePriority.MEDIUM.value,
        server_default=text(f"'{CasePriority.MEDIUM.value}'"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(
        String(20), default=CaseSource.MANUAL.value, nullable=False
    )
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # SLA deadline is fixed at creation; breach flag is set once when first observed
    sla_deadline: Mapped[datetime] = mapped_column(nullable=False)
    sla_breached: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    sla_breached_at: Mapped[datetime | None] = mapped_column(nullable=True)

    verification_status: Mapped[str] = mapped_column(
        String(20),
        default=VerificationStatus.NOT_STARTED.value,
        server_default=text(f"'{VerificationStatus.NOT_STARTED.value}'"),
        nullable=False,
    )

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    verification_checks: Mapped[list[CaseVerificationCheck]] = relationship(
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="CaseVerificationCheck.check_name",
    )
    activities: Mapped[list[CaseActivity]] = relationship(
        back_populates="case", order_by="CaseActivity.created_at"
    )
    notes: Mapped[list[CaseNote]] = relationship(
        back_populates="case", order_by="CaseNote.created_at"
    )


class CaseVerificationCheck(Base):
    """One independently verifiable check on a case."""

    __tablename__ = "case_verification_checks"
    __table_args__ = (
        UniqueConstraint("case_id", "check_name", name="uq_case_verification_check"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    check_name: Mapped[str] = mapped_column(String(20), nullable=False)
    verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    case: Mapped[Case] = relationship(back_populates="verification_checks")


class CaseActivity(Base):
    """Append-only activity log entry."""

    __tablename__ = "case_activities"
    __table_args__ = (Index("idx_case_activities_case", "case_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    activity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    case: Mapped[Case] = relationship(back_populates="activities")


class CaseNote(Base):
    """Append-only staff note."""

    __tablename__ = "case_notes"
    __table_args__ = (Index("idx_case_notes_case", "case_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    case: Mapped[Case] = relationship(back_populates="notes")
