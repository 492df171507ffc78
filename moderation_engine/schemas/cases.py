"""Pydantic schemas for case intake and case views."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from ..core.templates import MAX_DURATION_HOURS
from ..models import CaseStatus, CaseType, Resolution, RestrictionScope
from .base import ModerationBaseModel, PaginatedResponse, PaginationParams, TimestampMixin

REPORT_REASONS = (
    "Spam",
    "Inappropriate Content",
    "Harassment",
    "Impersonation",
    "Scam or Fraud",
    "Other",
)


# =============================================================================
# INTAKE
# =============================================================================


class ReportSubmission(ModerationBaseModel):
    """A user's report against another account."""

    subject_user_id: UUID
    reporter_id: UUID
    reason: str
    details: str = Field(default="", max_length=2000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if v not in REPORT_REASONS:
            raise ValueError(f"Reason must be one of: {', '.join(REPORT_REASONS)}")
        return v


class ResponseInput(ModerationBaseModel):
    """One answer to a position question."""

    question_id: str = Field(..., min_length=1, max_length=63)
    answer: str = Field(default="", max_length=5000)
    time_to_answer: int = Field(default=0, ge=0, description="Seconds spent on the question")


class ApplicationSubmission(ModerationBaseModel):
    """A completed application for a staff position."""

    user_id: UUID
    position_id: str = Field(..., min_length=1, max_length=63)
    responses: list[ResponseInput] = Field(default_factory=list)


class RestrictionRequestSubmission(ModerationBaseModel):
    """A staff-initiated request to restrict an account."""

    subject_user_id: UUID
    template_id: str = Field(..., min_length=1, max_length=63)
    details: str = Field(default="", max_length=5000)
    reason: str | None = Field(default=None, max_length=255)
    duration_hours: int | None = Field(default=None, ge=-1, le=MAX_DURATION_HOURS)
    scope: RestrictionScope | None = None


# =============================================================================
# QUERIES
# =============================================================================


class CaseFilter(PaginationParams):
    """Filters for listing open cases."""

    subject_user_id: UUID | None = None
    reason: str | None = None
    claimed_by: UUID | None = None
    unclaimed_only: bool = False


# =============================================================================
# VIEWS
# =============================================================================


class CaseSummary(ModerationBaseModel, TimestampMixin):
    """List-row view of a case."""

    id: UUID
    case_type: CaseType
    subject_user_id: UUID
    status: CaseStatus
    claimed_by: UUID | None = None
    claimed_at: datetime | None = None
    version: int


class CaseDetail(CaseSummary):
    """Common detail fields, denormalized for staff screens."""

    feedback_note: str | None = None
    resolution: Resolution | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    restriction_id: UUID | None = None
    has_active_restriction: bool = False


class ReportDetail(CaseDetail):
    reporter_id: UUID | None = None
    reason: str | None = None
    details: str | None = None
    duplicate_of: UUID | None = None
    other_reporters: list[UUID] = Field(default_factory=list)
    total_reports: int = 0


class ResponseView(ModerationBaseModel):
    question_id: str
    answer: str
    time_to_answer: int


class ApplicationDetail(CaseDetail):
    position_id: str | None = None
    position_title: str | None = None
    submitted_at: datetime | None = None
    time_to_complete: int | None = None
    responses: list[ResponseView] = Field(default_factory=list)


class RestrictionRequestDetail(CaseDetail):
    template_id: str | None = None
    reason: str | None = None
    details: str | None = None
    requested_duration_hours: int | None = None
    requested_scope: RestrictionScope | None = None
    requested_by: UUID | None = None


class CasePage(PaginatedResponse):
    """Paginated queue listing."""

    items: list[CaseSummary]
