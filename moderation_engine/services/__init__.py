"""Moderation engine services."""

from .audit import AuditService, ChainVerification
from .case_store import OPEN_STATUSES, CaseStore
from .claims import ClaimManager
from .errors import (
    AlreadyClaimedError,
    AlreadyResolvedError,
    AlreadyRestrictedError,
    ErrorKind,
    ForbiddenError,
    InvalidTransitionError,
    ModerationError,
    NotActiveError,
    NotClaimedByActorError,
    NotFoundError,
    ValidationFailedError,
    VersionConflictError,
)
from .intake import CaseIntake
from .moderation_service import ModerationService, UnitOfWork
from .restrictions import (
    AccessDecision,
    ResolvedPolicy,
    RestrictionPolicyResolver,
    RestrictionRequest,
)
from .results import Err, Ok, Result
from .state_machine import (
    CLAIMABLE_STATUS,
    CLAIMED_STATUS,
    TERMINAL_STATUSES,
    TRANSITIONS,
    StatusStateMachine,
    can_transition,
    is_terminal,
)

__all__ = [
    # Components
    "CaseStore",
    "ClaimManager",
    "StatusStateMachine",
    "RestrictionPolicyResolver",
    "AuditService",
    "CaseIntake",
    # Facade
    "ModerationService",
    "UnitOfWork",
    # DTOs
    "RestrictionRequest",
    "ResolvedPolicy",
    "AccessDecision",
    "ChainVerification",
    # State tables
    "OPEN_STATUSES",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "CLAIMABLE_STATUS",
    "CLAIMED_STATUS",
    "can_transition",
    "is_terminal",
    # Results
    "Ok",
    "Err",
    "Result",
    # Errors
    "ErrorKind",
    "ModerationError",
    "NotFoundError",
    "VersionConflictError",
    "AlreadyClaimedError",
    "InvalidTransitionError",
    "NotClaimedByActorError",
    "AlreadyRestrictedError",
    "AlreadyResolvedError",
    "ValidationFailedError",
    "ForbiddenError",
    "NotActiveError",
]
