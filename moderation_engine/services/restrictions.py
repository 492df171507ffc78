"""
Restriction Policy Resolver: turns a template plus overrides into a restriction.

Rules:
- Details shorter than the configured minimum are rejected
- The custom template requires a caller-supplied reason
- Templates that force a duration ignore the caller's duration
- A duration of PERMANENT_DURATION means the restriction never ends
- At most one active restriction per subject, enforced by a unique index
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.templates import PERMANENT_DURATION, RestrictionTemplate, TemplateCatalog
from ..models import AuditAction, Restriction, RestrictionScope, utcnow
from .audit import AuditService
from .errors import (
    AlreadyRestrictedError,
    NotActiveError,
    NotFoundError,
    ValidationFailedError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class RestrictionRequest:
    """Caller input for a new restriction."""
    subject_user_id: UUID
    template_id: str
    details: str
    duration_hours: int | None = None  # None or 0 = template default
    scope: RestrictionScope | None = None  # None = template default
    reason: str | None = None  # Required for the custom template
    source_case_id: UUID | None = None


@dataclass
class ResolvedPolicy:
    """The effective terms of a restriction after applying its template."""
    template: RestrictionTemplate
    reason: str
    scope: RestrictionScope
    start_at: datetime
    end_at: datetime | None

    @property
    def is_permanent(self) -> bool:
        return self.end_at is None


@dataclass
class AccessDecision:
    """Whether a subject may perform an action right now."""
    allowed: bool
    restriction: Restriction | None = None


# =============================================================================
# RESOLVER
# =============================================================================


class RestrictionPolicyResolver:
    """Creates, revokes and expires restrictions."""

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditService,
        catalog: TemplateCatalog,
        details_min_length: int = 10,
        custom_template_id: str = "custom",
    ):
        self.session = session
        self.audit = audit
        self.catalog = catalog
        self.details_min_length = details_min_length
        self.custom_template_id = custom_template_id

    def resolve_policy(self, request: RestrictionRequest, now: datetime | None = None) -> ResolvedPolicy:
        """Validate the request and compute its effective terms."""
        template = self.catalog.get(request.template_id)
        if template is None:
            raise ValidationFailedError("template_id", f"Unknown restriction template '{request.template_id}'")

        if len((request.details or "").strip()) < self.details_min_length:
            raise ValidationFailedError(
                "details",
                f"Please provide at least {self.details_min_length} characters of details",
            )

        if template.id == self.custom_template_id:
            reason = (request.reason or "").strip()
            if not reason:
                raise ValidationFailedError("reason", "Please provide a custom reason")
        else:
            reason = template.name

        if template.forces_duration:
            duration = template.default_duration_hours
        elif request.duration_hours:
            duration = request.duration_hours
        else:
            duration = template.default_duration_hours

        if duration != PERMANENT_DURATION and duration <= 0:
            raise ValidationFailedError("duration_hours", "Duration must be positive or permanent")

        start_at = now or utcnow()
        try:
            end_at = None if duration == PERMANENT_DURATION else start_at + timedelta(hours=duration)
        except OverflowError:
            raise ValidationFailedError("duration_hours", "Duration is too long") from None

        return ResolvedPolicy(
            template=template,
            reason=reason,
            scope=RestrictionScope(request.scope) if request.scope else template.default_scope,
            start_at=start_at,
            end_at=end_at,
        )

    async def create(self, request: RestrictionRequest, issued_by: UUID) -> Restriction:
        """Create an active restriction for the subject.

        Raises AlreadyRestrictedError if one is already active. A restriction
        whose end date has passed but which the expiry job has not reached yet
        is expired first.
        """
        policy = self.resolve_policy(request)

        existing = await self.get_active(request.subject_user_id)
        if existing is not None:
            if not self._has_lapsed(existing, policy.start_at):
                raise AlreadyRestrictedError(request.subject_user_id, existing.id)
            await self._deactivate(existing, revoked_by=None, action=AuditAction.RESTRICTION_EXPIRED)

        restriction = Restriction(
            subject_user_id=request.subject_user_id,
            template_id=policy.template.id,
            reason=policy.reason,
            details=request.details.strip(),
            scope=policy.scope,
            start_at=policy.start_at,
            end_at=policy.end_at,
            active=True,
            issued_by=issued_by,
            source_case_id=request.source_case_id,
            version=1,
        )
        self.session.add(restriction)

        try:
            await self.session.flush()
        except IntegrityError:
            # Lost the race against a concurrent creation for the same subject
            raise AlreadyRestrictedError(request.subject_user_id)

        await self.audit.record(
            action=AuditAction.RESTRICTION_CREATED,
            resource_type="restriction",
            resource_id=restriction.id,
            actor_id=issued_by,
            details={
                "subject_user_id": request.subject_user_id,
                "template_id": policy.template.id,
                "scope": policy.scope.value,
                "end_at": policy.end_at,
                "source_case_id": request.source_case_id,
            },
        )
        logger.info(
            f"Restriction {restriction.id} ({policy.template.id}, "
            f"{'permanent' if policy.is_permanent else policy.end_at.isoformat()}) "
            f"issued to {request.subject_user_id} by {issued_by}"
        )
        return restriction

    async def revoke(self, restriction_id: UUID, actor_id: UUID) -> Restriction:
        restriction = await self.get(restriction_id)
        if not restriction.active:
            raise NotActiveError(restriction_id)
        return await self._deactivate(restriction, revoked_by=actor_id, action=AuditAction.RESTRICTION_REVOKED)

    async def expire_due(self, now: datetime | None = None) -> list[Restriction]:
        """Deactivate every active restriction whose end date has passed."""
        now = now or utcnow()
        result = await self.session.execute(
            select(Restriction).where(
                Restriction.active.is_(True),
                Restriction.end_at.is_not(None),
                Restriction.end_at < now,
            )
        )

        expired = []
        for restriction in result.scalars().all():
            try:
                expired.append(
                    await self._deactivate(restriction, revoked_by=None, action=AuditAction.RESTRICTION_EXPIRED)
                )
            except (NotActiveError, VersionConflictError):
                logger.info(f"Restriction {restriction.id} changed during expiry, skipping")
        return expired

    async def check_access(self, subject_user_id: UUID, mutating: bool = True) -> AccessDecision:
        """Full restrictions block everything; partial ones block mutating actions."""
        restriction = await self.get_active(subject_user_id)
        if restriction is None or self._has_lapsed(restriction, utcnow()):
            return AccessDecision(allowed=True)
        if restriction.scope == RestrictionScope.PARTIAL and not mutating:
            return AccessDecision(allowed=True, restriction=restriction)
        return AccessDecision(allowed=False, restriction=restriction)

    async def get(self, restriction_id: UUID) -> Restriction:
        result = await self.session.execute(
            select(Restriction).where(Restriction.id == restriction_id)
        )
        restriction = result.scalar_one_or_none()
        if restriction is None:
            raise NotFoundError("restriction", restriction_id)
        return restriction

    async def get_active(self, subject_user_id: UUID) -> Restriction | None:
        result = await self.session.execute(
            select(Restriction).where(
                Restriction.subject_user_id == subject_user_id,
                Restriction.active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def history(self, subject_user_id: UUID) -> Sequence[Restriction]:
        """All restrictions ever issued to a subject, newest first."""
        result = await self.session.execute(
            select(Restriction)
            .where(Restriction.subject_user_id == subject_user_id)
            .order_by(Restriction.start_at.desc())
        )
        return result.scalars().all()

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    @staticmethod
    def _has_lapsed(restriction: Restriction, now: datetime) -> bool:
        return restriction.end_at is not None and restriction.end_at < now

    async def _deactivate(
        self,
        restriction: Restriction,
        revoked_by: UUID | None,
        action: AuditAction,
    ) -> Restriction:
        now = utcnow()
        result = await self.session.execute(
            update(Restriction.__table__)
            .where(
                Restriction.id == restriction.id,
                Restriction.version == restriction.version,
                Restriction.active.is_(True),
            )
            .values(
                active=False,
                revoked_by=revoked_by,
                revoked_at=now,
                version=Restriction.version + 1,
            )
        )

        if result.rowcount == 0:
            current = await self._reload(restriction.id)
            if not current.active:
                raise NotActiveError(restriction.id)
            raise VersionConflictError(restriction.id, restriction.version)

        restriction = await self._reload(restriction.id)
        await self.audit.record(
            action=action,
            resource_type="restriction",
            resource_id=restriction.id,
            actor_id=revoked_by,
            details={"subject_user_id": restriction.subject_user_id, "version": restriction.version},
        )
        logger.info(f"Restriction {restriction.id} {action.value} for {restriction.subject_user_id}")
        return restriction

    async def _reload(self, restriction_id: UUID) -> Restriction:
        result = await self.session.execute(
            select(Restriction)
            .where(Restriction.id == restriction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
