"""Moderation Engine Schemas.

Schemas are organized by domain:
- base: Common configuration, pagination
- cases: Intake payloads, queue filters, case views
- restrictions: Templates, restrictions, access checks
- audit: Audit log entries and chain verification
"""

from .audit import (
    AuditLogEntry,
    AuditLogQuery,
    AuditLogResponse,
    ChainVerificationResult,
)
from .base import (
    ModerationBaseModel,
    PaginatedResponse,
    PaginationParams,
    TimestampMixin,
)
from .cases import (
    REPORT_REASONS,
    # Intake
    ApplicationSubmission,
    ReportSubmission,
    ResponseInput,
    RestrictionRequestSubmission,
    # Queries
    CaseFilter,
    # Views
    ApplicationDetail,
    CaseDetail,
    CasePage,
    CaseSummary,
    ReportDetail,
    ResponseView,
    RestrictionRequestDetail,
)
from .restrictions import (
    AccessCheck,
    RestrictionCreate,
    RestrictionView,
    TemplateView,
)

__all__ = [
    # Base
    "ModerationBaseModel",
    "TimestampMixin",
    "PaginationParams",
    "PaginatedResponse",
    # Cases
    "REPORT_REASONS",
    "ReportSubmission",
    "ResponseInput",
    "ApplicationSubmission",
    "RestrictionRequestSubmission",
    "CaseFilter",
    "CaseSummary",
    "CasePage",
    "CaseDetail",
    "ReportDetail",
    "ResponseView",
    "ApplicationDetail",
    "RestrictionRequestDetail",
    # Restrictions
    "TemplateView",
    "RestrictionCreate",
    "RestrictionView",
    "AccessCheck",
    # Audit
    "AuditLogEntry",
    "AuditLogQuery",
    "AuditLogResponse",
    "ChainVerificationResult",
]
