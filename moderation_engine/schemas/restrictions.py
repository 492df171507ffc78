"""Pydantic schemas for restriction templates and restrictions."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, computed_field

from ..core.templates import MAX_DURATION_HOURS
from ..models import RestrictionScope
from .base import ModerationBaseModel


class TemplateView(ModerationBaseModel):
    """A restriction template as shown in the staff picker."""

    id: str
    name: str
    description: str
    default_duration_hours: int = Field(..., description="-1 means permanent")
    default_scope: RestrictionScope
    is_permanent: bool
    forces_duration: bool


class RestrictionCreate(ModerationBaseModel):
    """Staff input for a new restriction."""

    template_id: str = Field(..., min_length=1, max_length=63)
    details: str = Field(default="", max_length=5000)
    subject_user_id: UUID | None = None
    duration_hours: int | None = Field(default=None, ge=-1, le=MAX_DURATION_HOURS)
    scope: RestrictionScope | None = None
    reason: str | None = Field(default=None, max_length=255)


class RestrictionView(ModerationBaseModel):
    """A restriction with its lifecycle fields."""

    id: UUID
    subject_user_id: UUID
    template_id: str
    reason: str
    details: str
    scope: RestrictionScope
    start_at: datetime
    end_at: datetime | None = None
    active: bool
    issued_by: UUID
    revoked_by: UUID | None = None
    revoked_at: datetime | None = None
    source_case_id: UUID | None = None
    version: int

    @computed_field
    @property
    def is_permanent(self) -> bool:
        return self.end_at is None


class AccessCheck(ModerationBaseModel):
    """Result of checking whether a subject may act."""

    subject_user_id: UUID
    mutating: bool
    allowed: bool
    restriction: RestrictionView | None = None
