"""
Status state machine for cases.

Reports and restriction requests:  open -> assigned -> resolved
                                    assigned -> open (release)
Applications:  draft -> submitted -> in_review -> approved | rejected
               in_review -> submitted (release)
               submitted -> approved | rejected (decided without opening)

Terminal statuses accept no further transitions. Every transition is one
version-checked write plus one TRANSITIONED audit entry.
"""

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import ColumnElement

from ..models import AuditAction, Case, CaseStatus, CaseType, Resolution, utcnow
from .audit import AuditService
from .case_store import CaseStore
from .errors import (
    AlreadyResolvedError,
    InvalidTransitionError,
    NotClaimedByActorError,
)

_REVIEWABLE = {
    CaseStatus.OPEN: {CaseStatus.ASSIGNED},
    CaseStatus.ASSIGNED: {CaseStatus.OPEN, CaseStatus.RESOLVED},
    CaseStatus.RESOLVED: set(),
}

TRANSITIONS: dict[CaseType, dict[CaseStatus, set[CaseStatus]]] = {
    CaseType.REPORT: _REVIEWABLE,
    CaseType.RESTRICTION_REQUEST: _REVIEWABLE,
    CaseType.APPLICATION: {
        CaseStatus.DRAFT: {CaseStatus.SUBMITTED},
        CaseStatus.SUBMITTED: {CaseStatus.IN_REVIEW, CaseStatus.APPROVED, CaseStatus.REJECTED},
        CaseStatus.IN_REVIEW: {CaseStatus.SUBMITTED, CaseStatus.APPROVED, CaseStatus.REJECTED},
        CaseStatus.APPROVED: set(),
        CaseStatus.REJECTED: set(),
    },
}

TERMINAL_STATUSES = frozenset({CaseStatus.RESOLVED, CaseStatus.APPROVED, CaseStatus.REJECTED})

# Claiming moves a case from its queue status into its working status
CLAIMABLE_STATUS = {
    CaseType.REPORT: CaseStatus.OPEN,
    CaseType.RESTRICTION_REQUEST: CaseStatus.OPEN,
    CaseType.APPLICATION: CaseStatus.SUBMITTED,
}
CLAIMED_STATUS = {
    CaseType.REPORT: CaseStatus.ASSIGNED,
    CaseType.RESTRICTION_REQUEST: CaseStatus.ASSIGNED,
    CaseType.APPLICATION: CaseStatus.IN_REVIEW,
}


def is_terminal(status: CaseStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(case_type: CaseType, from_status: CaseStatus, to_status: CaseStatus) -> bool:
    return to_status in TRANSITIONS[case_type].get(from_status, set())


class StatusStateMachine:
    """Validates and applies status transitions."""

    def __init__(self, store: CaseStore, audit: AuditService):
        self.store = store
        self.audit = audit

    def validate(self, case: Case, to_status: CaseStatus) -> None:
        if is_terminal(case.status):
            raise AlreadyResolvedError(case.id, case.status.value)
        if not can_transition(case.case_type, case.status, to_status):
            raise InvalidTransitionError(case.status.value, to_status.value)

    async def apply(
        self,
        case: Case,
        to_status: CaseStatus,
        actor_id: UUID | None,
        changes: dict[str, Any] | None = None,
        when: Sequence[ColumnElement[bool]] = (),
        audit_details: dict[str, Any] | None = None,
    ) -> Case:
        """Move ``case`` to ``to_status`` if it is still in the status it was read in."""
        self.validate(case, to_status)
        from_status = case.status

        updated = await self.store.update(
            case.id,
            case.version,
            {**(changes or {}), "status": to_status},
            when=[Case.status == from_status, *when],
        )

        await self.audit.record(
            action=AuditAction.TRANSITIONED,
            resource_type="case",
            resource_id=case.id,
            actor_id=actor_id,
            details={
                "from": from_status.value,
                "to": to_status.value,
                "version": updated.version,
                **(audit_details or {}),
            },
        )
        return updated

    def check_finalize(self, case: Case, to_status: CaseStatus, actor_id: UUID) -> None:
        """Raise unless ``actor_id`` may move ``case`` into terminal ``to_status``.

        Reports and restriction requests must be held by the actor.
        Applications can be decided straight from ``submitted``; if another
        actor holds the claim, they cannot.
        """
        if is_terminal(case.status):
            raise AlreadyResolvedError(case.id, case.status.value)
        if to_status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(case.status.value, to_status.value)

        if case.case_type == CaseType.APPLICATION:
            if case.claimed_by is not None and case.claimed_by != actor_id:
                raise NotClaimedByActorError(case.id, actor_id, case.claimed_by)
        elif case.claimed_by != actor_id:
            raise NotClaimedByActorError(case.id, actor_id, case.claimed_by)
        self.validate(case, to_status)

    async def finalize(
        self,
        case: Case,
        to_status: CaseStatus,
        actor_id: UUID,
        note: str | None = None,
        resolution: Resolution | None = None,
        restriction_id: UUID | None = None,
    ) -> Case:
        """Move a case into a terminal status.

        Applications always get a feedback note, empty when none is given.
        """
        self.check_finalize(case, to_status, actor_id)
        if case.case_type == CaseType.APPLICATION:
            note = note or ""

        changes: dict[str, Any] = {
            "claimed_by": None,
            "claimed_at": None,
            "resolved_by": actor_id,
            "resolved_at": utcnow(),
            "feedback_note": note,
            "resolution": resolution,
            "restriction_id": restriction_id,
        }
        details: dict[str, Any] = {}
        if resolution:
            details["resolution"] = resolution.value
        if restriction_id:
            details["restriction_id"] = restriction_id

        return await self.apply(
            case,
            to_status,
            actor_id,
            changes=changes,
            audit_details=details,
        )
