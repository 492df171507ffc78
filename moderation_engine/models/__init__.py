"""SQLAlchemy ORM Models for the moderation engine."""

from .base import ArchiveMixin, Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow
from .models import (
    # Enums
    AuditAction,
    CaseStatus,
    CaseType,
    Resolution,
    RestrictionScope,
    # Cases
    ApplicationCase,
    ApplicationResponse,
    Case,
    ReportCase,
    RestrictionRequestCase,
    # Restrictions
    Restriction,
    # Audit
    AuditLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "ArchiveMixin",
    "UTCDateTime",
    "utcnow",
    # Enums
    "CaseType",
    "CaseStatus",
    "Resolution",
    "RestrictionScope",
    "AuditAction",
    # Cases
    "Case",
    "ReportCase",
    "ApplicationCase",
    "RestrictionRequestCase",
    "ApplicationResponse",
    # Restrictions
    "Restriction",
    # Audit
    "AuditLog",
]
