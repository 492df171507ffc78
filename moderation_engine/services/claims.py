"""Claim manager: exclusive ownership of a case while a staff member works it."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from ..models import AuditAction, Case, CaseStatus, CaseType, utcnow
from .audit import AuditService
from .case_store import CaseStore
from .errors import (
    AlreadyClaimedError,
    AlreadyResolvedError,
    InvalidTransitionError,
    NotClaimedByActorError,
    VersionConflictError,
)
from .state_machine import CLAIMABLE_STATUS, CLAIMED_STATUS, StatusStateMachine, is_terminal

logger = logging.getLogger(__name__)


class ClaimManager:
    """Claims, releases and lease heartbeats.

    A claim is taken with one conditional write that requires the case to be
    unclaimed and in its queue status, so of several concurrent claimants
    exactly one succeeds. With ``lease_seconds`` set, a claim whose last
    heartbeat is older than the lease may be taken over.
    """

    def __init__(
        self,
        store: CaseStore,
        audit: AuditService,
        state_machine: StatusStateMachine,
        lease_seconds: int | None = None,
    ):
        self.store = store
        self.audit = audit
        self.state_machine = state_machine
        self.lease_seconds = lease_seconds

    async def claim(self, case_id: UUID, actor_id: UUID) -> Case:
        case = await self.store.get(case_id)

        if is_terminal(case.status):
            raise AlreadyResolvedError(case.id, case.status.value)

        if case.claimed_by is not None:
            if case.claimed_by == actor_id:
                return case
            if not self._lease_expired(case.claimed_at):
                raise AlreadyClaimedError(case.id, case.claimed_by)
            return await self._take_over(case, actor_id)

        if case.status != CLAIMABLE_STATUS[case.case_type]:
            raise InvalidTransitionError(case.status.value, CLAIMED_STATUS[case.case_type].value)

        try:
            claimed = await self.state_machine.apply(
                case,
                CLAIMED_STATUS[case.case_type],
                actor_id,
                changes={"claimed_by": actor_id, "claimed_at": utcnow()},
                when=[Case.claimed_by.is_(None)],
            )
        except VersionConflictError:
            current = await self.store.get(case_id)
            if current.claimed_by == actor_id:
                return current
            if current.claimed_by is not None:
                raise AlreadyClaimedError(case_id, current.claimed_by)
            if is_terminal(current.status):
                raise AlreadyResolvedError(case_id, current.status.value)
            raise

        await self.audit.record(
            action=AuditAction.CLAIMED,
            resource_type="case",
            resource_id=case.id,
            actor_id=actor_id,
            details={"version": claimed.version},
        )
        logger.info(f"Case {case.id} claimed by {actor_id}")
        return claimed

    async def release(self, case_id: UUID, actor_id: UUID) -> Case:
        """Give a claimed case back to its queue."""
        case = await self.store.get(case_id)

        if is_terminal(case.status):
            raise AlreadyResolvedError(case.id, case.status.value)
        if case.claimed_by != actor_id:
            raise NotClaimedByActorError(case.id, actor_id, case.claimed_by)

        queue_status = CLAIMABLE_STATUS[case.case_type]
        released = await self.state_machine.apply(
            case,
            queue_status,
            actor_id,
            changes={"claimed_by": None, "claimed_at": None},
            when=[Case.claimed_by == actor_id],
        )

        await self.audit.record(
            action=AuditAction.RELEASED,
            resource_type="case",
            resource_id=case.id,
            actor_id=actor_id,
            details={"version": released.version},
        )
        logger.info(f"Case {case.id} released by {actor_id}")
        return released

    async def heartbeat(self, case_id: UUID, actor_id: UUID) -> Case:
        """Refresh the claim timestamp so the lease does not lapse."""
        case = await self.store.get(case_id)
        if case.claimed_by != actor_id:
            raise NotClaimedByActorError(case.id, actor_id, case.claimed_by)

        return await self.store.update(
            case.id,
            case.version,
            {"claimed_at": utcnow()},
            when=[Case.claimed_by == actor_id],
        )

    async def open_application(self, case_id: UUID, actor_id: UUID) -> Case:
        """Opening a submitted application marks it in review for the opener.

        Opening is idempotent: an application already in review or decided
        is returned unchanged with no new audit entry.
        """
        case = await self.store.get(case_id)
        if case.case_type != CaseType.APPLICATION:
            raise InvalidTransitionError(case.status.value, CaseStatus.IN_REVIEW.value)
        if case.status != CaseStatus.SUBMITTED:
            return case

        try:
            return await self.claim(case_id, actor_id)
        except AlreadyClaimedError:
            return await self.store.get(case_id)

    def _lease_expired(self, claimed_at: datetime | None) -> bool:
        if self.lease_seconds is None or claimed_at is None:
            return False
        return utcnow() - claimed_at > timedelta(seconds=self.lease_seconds)

    async def _take_over(self, case: Case, actor_id: UUID) -> Case:
        previous_holder = case.claimed_by
        try:
            claimed = await self.store.update(
                case.id,
                case.version,
                {"claimed_by": actor_id, "claimed_at": utcnow()},
                when=[Case.claimed_by == previous_holder],
            )
        except VersionConflictError:
            current = await self.store.get(case.id)
            raise AlreadyClaimedError(case.id, current.claimed_by)

        await self.audit.record(
            action=AuditAction.CLAIMED,
            resource_type="case",
            resource_id=case.id,
            actor_id=actor_id,
            details={"version": claimed.version, "reclaimed_from": previous_holder},
        )
        logger.warning(f"Case {case.id}: lease of {previous_holder} lapsed, reclaimed by {actor_id}")
        return claimed
