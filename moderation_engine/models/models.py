"""SQLAlchemy ORM Models for the moderation engine.

Cases share one table and are polymorphic on ``case_type``. Restrictions and
the audit log have their own tables.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import ArchiveMixin, Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class CaseType(str, PyEnum):
    REPORT = "report"
    APPLICATION = "application"
    RESTRICTION_REQUEST = "restriction_request"


class CaseStatus(str, PyEnum):
    # Reports and restriction requests
    OPEN = "open"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    # Applications
    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class Resolution(str, PyEnum):
    """How a report or restriction request was closed."""
    DISMISSED = "dismissed"
    RESTRICTED = "restricted"


class RestrictionScope(str, PyEnum):
    FULL = "full"  # Blocks all access
    PARTIAL = "partial"  # Blocks mutating actions only


# Shared by restriction requests and restrictions
RESTRICTION_SCOPE_TYPE = _enum(RestrictionScope, "restriction_scope")


class AuditAction(str, PyEnum):
    CREATED = "created"
    CLAIMED = "claimed"
    RELEASED = "released"
    TRANSITIONED = "transitioned"
    ARCHIVED = "archived"
    RESTRICTION_CREATED = "restriction_created"
    RESTRICTION_REVOKED = "restriction_revoked"
    RESTRICTION_EXPIRED = "restriction_expired"  # Deactivated by the maintenance job


# =============================================================================
# CASES
# =============================================================================


class Case(Base, UUIDMixin, TimestampMixin, ArchiveMixin):
    """A unit of moderation work tracked through a status lifecycle."""

    __tablename__ = "cases"

    case_type: Mapped[CaseType] = mapped_column(
        _enum(CaseType, "case_type"), nullable=False
    )
    subject_user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[CaseStatus] = mapped_column(
        _enum(CaseStatus, "case_status"), nullable=False
    )

    # Claim ownership; non-null only while the case is in a claimed status
    claimed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Optimistic concurrency: incremented by every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Shared by reports and restriction requests
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Outcome
    feedback_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution: Mapped[Resolution | None] = mapped_column(
        _enum(Resolution, "case_resolution"), nullable=True
    )
    resolved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    restriction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("restrictions.id"), nullable=True
    )

    __mapper_args__ = {
        "polymorphic_on": "case_type",
        # Subtype columns load with every base query
        "with_polymorphic": "*",
    }

    __table_args__ = (
        Index("idx_cases_type_status", "case_type", "status"),
        Index("idx_cases_subject_reason", "subject_user_id", "reason"),
        Index("idx_cases_claimed_by", "claimed_by"),
    )

    def __repr__(self) -> str:
        return (
            f"<Case {self.id} type={self.case_type.value} status={self.status.value} "
            f"v{self.version}>"
        )


class ReportCase(Case):
    """A user-submitted complaint about another account."""

    reporter_id: Mapped[UUID | None] = mapped_column(nullable=True)
    duplicate_of: Mapped[UUID | None] = mapped_column(
        ForeignKey("cases.id"), nullable=True
    )

    __mapper_args__ = {
        "polymorphic_identity": CaseType.REPORT,
    }


class ApplicationCase(Case):
    """A user's application for a staff position."""

    position_id: Mapped[str | None] = mapped_column(String(63), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    time_to_complete: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)  # drafts only

    responses: Mapped[list["ApplicationResponse"]] = relationship(
        back_populates="application",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ApplicationResponse.question_id",
    )

    __mapper_args__ = {
        "polymorphic_identity": CaseType.APPLICATION,
    }


class RestrictionRequestCase(Case):
    """A staff-initiated request to restrict an account."""

    template_id: Mapped[str | None] = mapped_column(String(63), nullable=True)
    requested_duration_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requested_scope: Mapped[RestrictionScope | None] = mapped_column(
        RESTRICTION_SCOPE_TYPE, nullable=True
    )
    requested_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __mapper_args__ = {
        "polymorphic_identity": CaseType.RESTRICTION_REQUEST,
    }


class ApplicationResponse(Base, UUIDMixin):
    """One answer in an application."""

    __tablename__ = "application_responses"

    case_id: Mapped[UUID] = mapped_column(ForeignKey("cases.id"), nullable=False)
    question_id: Mapped[str] = mapped_column(String(63), nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False, default="")
    time_to_answer: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # seconds

    application: Mapped["ApplicationCase"] = relationship(back_populates="responses")

    __table_args__ = (
        Index("idx_application_responses_case", "case_id"),
    )


# =============================================================================
# RESTRICTIONS
# =============================================================================


class Restriction(Base, UUIDMixin):
    """An active or historical access limitation on an account.

    Restrictions are deactivated, never deleted. The partial unique index keeps
    at most one active restriction per subject.
    """

    __tablename__ = "restrictions"

    subject_user_id: Mapped[UUID] = mapped_column(nullable=False)
    template_id: Mapped[str] = mapped_column(String(63), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[RestrictionScope] = mapped_column(
        RESTRICTION_SCOPE_TYPE, nullable=False
    )
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(nullable=True)  # NULL = permanent
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    issued_by: Mapped[UUID] = mapped_column(nullable=False)
    revoked_by: Mapped[UUID | None] = mapped_column(nullable=True)  # NULL with revoked_at = expired
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    source_case_id: Mapped[UUID | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index(
            "uq_restrictions_active_subject",
            "subject_user_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
        Index("idx_restrictions_subject", "subject_user_id"),
        Index("idx_restrictions_active_end", "active", "end_at"),
    )

    @property
    def is_permanent(self) -> bool:
        return self.end_at is None

    @property
    def is_expired(self) -> bool:
        """Deactivated by reaching its end date rather than by a staff member."""
        return not self.active and self.revoked_at is not None and self.revoked_by is None

    def __repr__(self) -> str:
        return (
            f"<Restriction {self.id} subject={self.subject_user_id} "
            f"scope={self.scope.value} active={self.active}>"
        )


# =============================================================================
# AUDIT
# =============================================================================


class AuditLog(Base):
    """Append-only audit trail."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)  # None for system actions
    action: Mapped[AuditAction] = mapped_column(
        _enum(AuditAction, "audit_action"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID] = mapped_column(nullable=False)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    previous_hash: Mapped[str | None] = mapped_column(String(64))
    entry_hash: Mapped[str | None] = mapped_column(String(64))

    __table_args__ = (
        Index("idx_audit_log_resource", "resource_type", "resource_id"),
        Index("idx_audit_log_actor", "actor_id", "created_at"),
        Index("idx_audit_log_action", "action", "created_at"),
    )
