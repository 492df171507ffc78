"""Named error kinds raised by the moderation engine.

Every error carries structured fields so callers branch on data, never on
message text.
"""

from enum import Enum
from typing import Any
from uuid import UUID


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VERSION_CONFLICT = "version_conflict"
    ALREADY_CLAIMED = "already_claimed"
    INVALID_TRANSITION = "invalid_transition"
    NOT_CLAIMED_BY_ACTOR = "not_claimed_by_actor"
    ALREADY_RESTRICTED = "already_restricted"
    ALREADY_RESOLVED = "already_resolved"
    VALIDATION_FAILED = "validation_failed"
    FORBIDDEN = "forbidden"
    NOT_ACTIVE = "not_active"


class ModerationError(Exception):
    """Base exception for moderation operations."""

    kind: ErrorKind

    def context(self) -> dict[str, Any]:
        """Structured fields describing the error."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind.value, "message": str(self), **self.context()}


class NotFoundError(ModerationError):
    """Case or restriction does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: UUID | str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type.capitalize()} {resource_id} not found")

    def context(self) -> dict[str, Any]:
        return {"resource_type": self.resource_type, "resource_id": str(self.resource_id)}


class VersionConflictError(ModerationError):
    """An optimistic write lost a race; re-read and retry."""

    kind = ErrorKind.VERSION_CONFLICT

    def __init__(self, resource_id: UUID, expected_version: int):
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"Version mismatch on {resource_id}: expected v{expected_version}. "
            "The record was modified by another actor."
        )

    def context(self) -> dict[str, Any]:
        return {"resource_id": str(self.resource_id), "expected_version": self.expected_version}


class AlreadyClaimedError(ModerationError):
    """Another actor holds the claim on this case."""

    kind = ErrorKind.ALREADY_CLAIMED

    def __init__(self, case_id: UUID, holder_id: UUID | None):
        self.case_id = case_id
        self.holder_id = holder_id
        super().__init__(f"Case {case_id} is already being handled by {holder_id or 'another staff member'}")

    def context(self) -> dict[str, Any]:
        return {
            "case_id": str(self.case_id),
            "claimed_by": str(self.holder_id) if self.holder_id else None,
        }


class InvalidTransitionError(ModerationError):
    """The requested status change is not legal from the current status."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_status: str | None, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition from {from_status} to {to_status}")

    def context(self) -> dict[str, Any]:
        return {"from": self.from_status, "to": self.to_status}


class NotClaimedByActorError(ModerationError):
    """The actor tried to act on a case without holding its claim."""

    kind = ErrorKind.NOT_CLAIMED_BY_ACTOR

    def __init__(self, case_id: UUID, actor_id: UUID, holder_id: UUID | None):
        self.case_id = case_id
        self.actor_id = actor_id
        self.holder_id = holder_id
        super().__init__(f"Actor {actor_id} does not hold the claim on case {case_id}")

    def context(self) -> dict[str, Any]:
        return {
            "case_id": str(self.case_id),
            "claimed_by": str(self.holder_id) if self.holder_id else None,
        }


class AlreadyRestrictedError(ModerationError):
    """The subject already has an active restriction."""

    kind = ErrorKind.ALREADY_RESTRICTED

    def __init__(self, subject_user_id: UUID, restriction_id: UUID | None = None):
        self.subject_user_id = subject_user_id
        self.restriction_id = restriction_id
        super().__init__(f"User {subject_user_id} already has an active restriction")

    def context(self) -> dict[str, Any]:
        return {
            "subject_user_id": str(self.subject_user_id),
            "restriction_id": str(self.restriction_id) if self.restriction_id else None,
        }


class AlreadyResolvedError(ModerationError):
    """The case is already in a terminal status."""

    kind = ErrorKind.ALREADY_RESOLVED

    def __init__(self, case_id: UUID, status: str):
        self.case_id = case_id
        self.status = status
        super().__init__(f"Case {case_id} has already been resolved ({status})")

    def context(self) -> dict[str, Any]:
        return {"case_id": str(self.case_id), "status": self.status}


class ValidationFailedError(ModerationError):
    """Input failed a business rule."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)

    def context(self) -> dict[str, Any]:
        return {"field": self.field}


class ForbiddenError(ModerationError):
    """The actor's staff level is too low for the operation."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, actor_id: UUID, required_level: int):
        self.actor_id = actor_id
        self.required_level = required_level
        super().__init__("Insufficient permissions")

    def context(self) -> dict[str, Any]:
        return {"required_level": int(self.required_level)}


class NotActiveError(ModerationError):
    """The restriction is not active (already revoked or expired)."""

    kind = ErrorKind.NOT_ACTIVE

    def __init__(self, restriction_id: UUID):
        self.restriction_id = restriction_id
        super().__init__(f"Restriction {restriction_id} is not active")

    def context(self) -> dict[str, Any]:
        return {"restriction_id": str(self.restriction_id)}
