"""Pydantic schemas for the audit log."""

from datetime import datetime
from uuid import UUID

from ..models import AuditAction
from .base import ModerationBaseModel, PaginatedResponse, PaginationParams


class AuditLogEntry(ModerationBaseModel):
    """A single audit log entry."""

    id: int
    actor_id: UUID | None = None  # None for system actions
    action: AuditAction
    resource_type: str
    resource_id: UUID
    details: dict
    created_at: datetime

    # Chain integrity
    previous_hash: str | None = None
    entry_hash: str | None = None


class AuditLogQuery(PaginationParams):
    """Query parameters for audit log searches."""

    actor_id: UUID | None = None
    action: AuditAction | None = None
    resource_type: str | None = None
    resource_id: UUID | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response."""

    items: list[AuditLogEntry]


class ChainVerificationResult(ModerationBaseModel):
    """Result of audit chain integrity verification."""

    is_valid: bool
    verified_entries: int
    broken_at_id: int | None = None
    verification_timestamp: datetime
