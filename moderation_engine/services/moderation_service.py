"""
Moderation Service: the engine's public operations.

Every method:
- Checks the actor's staff level before touching the store
- Runs in its own transaction; all writes commit together or not at all
- Retries version conflicts in a fresh transaction
- Returns Ok(value) or Err(error) instead of raising ModerationError
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.positions import get_position
from ..core.security import Actor, StaffLevel
from ..core.templates import TemplateCatalog
from ..models import (
    ApplicationCase,
    AuditAction,
    Case,
    CaseStatus,
    CaseType,
    ReportCase,
    Resolution,
    Restriction,
    RestrictionRequestCase,
    utcnow,
)
from ..schemas import (
    AccessCheck,
    ApplicationDetail,
    ApplicationSubmission,
    AuditLogEntry,
    AuditLogQuery,
    AuditLogResponse,
    CaseDetail,
    CaseFilter,
    CasePage,
    CaseSummary,
    ChainVerificationResult,
    ReportDetail,
    ReportSubmission,
    ResponseView,
    RestrictionCreate,
    RestrictionRequestDetail,
    RestrictionRequestSubmission,
    RestrictionView,
    TemplateView,
)
from .audit import AuditService
from .case_store import CaseStore
from .claims import ClaimManager
from .errors import (
    ForbiddenError,
    InvalidTransitionError,
    ModerationError,
    ValidationFailedError,
    VersionConflictError,
)
from .intake import CaseIntake
from .restrictions import RestrictionPolicyResolver, RestrictionRequest
from .results import Err, Ok, Result
from .state_machine import CLAIMED_STATUS, StatusStateMachine, is_terminal

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _parse(schema: type[M], **data: Any) -> M:
    """Build a payload schema, reporting the first invalid field."""
    try:
        return schema(**data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or schema.__name__
        raise ValidationFailedError(field, error["msg"]) from e


@dataclass
class UnitOfWork:
    """The components bound to one transaction."""
    session: AsyncSession
    store: CaseStore
    audit: AuditService
    state_machine: StatusStateMachine
    claims: ClaimManager
    resolver: RestrictionPolicyResolver
    intake: CaseIntake


class ModerationService:
    """Entry point for user-facing intake and staff moderation actions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
        catalog: TemplateCatalog | None = None,
    ):
        if session_factory is None:
            from ..core.database import async_session_factory

            session_factory = async_session_factory
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.catalog = catalog or TemplateCatalog()

    # =========================================================================
    # INTAKE
    # =========================================================================

    async def submit_report(
        self,
        subject_user_id: UUID,
        reason: str,
        details: str,
        reporter_id: UUID,
    ) -> Result[ReportCase]:
        try:
            submission = _parse(
                ReportSubmission,
                subject_user_id=subject_user_id,
                reason=reason,
                details=details,
                reporter_id=reporter_id,
            )
        except ValidationFailedError as e:
            return Err(e)
        return await self._run("submit_report", lambda uow: uow.intake.submit_report(submission))

    async def start_application(self, user_id: UUID, position_id: str) -> Result[ApplicationCase]:
        return await self._run(
            "start_application",
            lambda uow: uow.intake.start_application(user_id, position_id),
        )

    async def submit_application(
        self,
        user_id: UUID,
        position_id: str,
        responses: list[dict[str, Any]],
    ) -> Result[ApplicationCase]:
        try:
            submission = _parse(
                ApplicationSubmission,
                user_id=user_id,
                position_id=position_id,
                responses=responses,
            )
        except ValidationFailedError as e:
            return Err(e)
        return await self._run("submit_application", lambda uow: uow.intake.submit_application(submission))

    async def request_restriction(
        self,
        actor: Actor,
        subject_user_id: UUID,
        template_id: str,
        details: str,
        duration_hours: int | None = None,
        scope: str | None = None,
        reason: str | None = None,
    ) -> Result[RestrictionRequestCase]:
        """Open a restriction request for another staff member to review."""
        if denied := self._authorize("request_restriction", actor, StaffLevel.TRIAL_MOD):
            return denied
        try:
            submission = _parse(
                RestrictionRequestSubmission,
                subject_user_id=subject_user_id,
                template_id=template_id,
                details=details,
                duration_hours=duration_hours,
                scope=scope,
                reason=reason,
            )
        except ValidationFailedError as e:
            return Err(e)
        return await self._run(
            "request_restriction",
            lambda uow: uow.intake.request_restriction(submission, actor.id),
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_open_cases(
        self,
        actor: Actor,
        case_type: CaseType | str,
        filters: CaseFilter | None = None,
    ) -> Result[CasePage]:
        if denied := self._authorize("list_open_cases", actor, StaffLevel.TRIAL_MOD):
            return denied
        try:
            case_type = CaseType(case_type)
        except ValueError:
            return Err(ValidationFailedError("case_type", f"Unknown case type '{case_type}'"))
        filters = filters or CaseFilter()

        async def work(uow: UnitOfWork) -> CasePage:
            cases, total = await uow.store.list_open(
                case_type,
                subject_user_id=filters.subject_user_id,
                reason=filters.reason,
                claimed_by=filters.claimed_by,
                unclaimed_only=filters.unclaimed_only,
                limit=filters.page_size,
                offset=filters.offset,
            )
            return CasePage.create(
                items=[CaseSummary.model_validate(c) for c in cases],
                total=total,
                page=filters.page,
                page_size=filters.page_size,
            )

        return await self._run("list_open_cases", work)

    async def get_case_detail(self, actor: Actor, case_id: UUID) -> Result[CaseDetail]:
        """Case with denormalized subject and applicant information."""
        if denied := self._authorize("get_case_detail", actor, StaffLevel.TRIAL_MOD):
            return denied

        async def work(uow: UnitOfWork) -> CaseDetail:
            return await self._build_detail(uow, await uow.store.get(case_id))

        return await self._run("get_case_detail", work)

    async def list_templates(self) -> Result[list[TemplateView]]:
        return Ok([TemplateView.model_validate(t) for t in self.catalog.list()])

    async def check_access(self, subject_user_id: UUID, mutating: bool = True) -> Result[AccessCheck]:
        """Whether the subject may act now, and which restriction blocks them."""

        async def work(uow: UnitOfWork) -> AccessCheck:
            decision = await uow.resolver.check_access(subject_user_id, mutating)
            return AccessCheck(
                subject_user_id=subject_user_id,
                mutating=mutating,
                allowed=decision.allowed,
                restriction=RestrictionView.model_validate(decision.restriction) if decision.restriction else None,
            )

        return await self._run("check_access", work)

    async def list_restrictions(self, actor: Actor, subject_user_id: UUID) -> Result[list[RestrictionView]]:
        """Restriction history of a subject, newest first."""
        if denied := self._authorize("list_restrictions", actor, StaffLevel.TRIAL_MOD):
            return denied

        async def work(uow: UnitOfWork) -> list[RestrictionView]:
            return [RestrictionView.model_validate(r) for r in await uow.resolver.history(subject_user_id)]

        return await self._run("list_restrictions", work)

    # =========================================================================
    # CLAIMS
    # =========================================================================

    async def claim(self, actor: Actor, case_id: UUID) -> Result[Case]:
        if denied := self._authorize("claim", actor, StaffLevel.TRIAL_MOD):
            return denied
        return await self._run("claim", lambda uow: uow.claims.claim(case_id, actor.id))

    async def release(self, actor: Actor, case_id: UUID) -> Result[Case]:
        if denied := self._authorize("release", actor, StaffLevel.TRIAL_MOD):
            return denied
        return await self._run("release", lambda uow: uow.claims.release(case_id, actor.id))

    async def heartbeat(self, actor: Actor, case_id: UUID) -> Result[Case]:
        if denied := self._authorize("heartbeat", actor, StaffLevel.TRIAL_MOD):
            return denied
        return await self._run("heartbeat", lambda uow: uow.claims.heartbeat(case_id, actor.id))

    async def open_application(self, actor: Actor, case_id: UUID) -> Result[Case]:
        """Mark a submitted application as in review by the opener."""
        if denied := self._authorize("open_application", actor, StaffLevel.TRIAL_MOD):
            return denied
        return await self._run("open_application", lambda uow: uow.claims.open_application(case_id, actor.id))

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        actor: Actor,
        case_id: UUID,
        new_status: CaseStatus | str,
        note: str | None = None,
    ) -> Result[Case]:
        """Move a case to ``new_status``.

        For reports and restriction requests: ``assigned`` claims,
        ``open`` releases and ``resolved`` dismisses. For applications:
        ``in_review`` opens, ``submitted`` releases and ``approved`` or
        ``rejected`` decides with ``note`` as feedback. Resolving with a
        restriction goes through ``create_restriction``.
        """
        if denied := self._authorize("transition", actor, StaffLevel.TRIAL_MOD):
            return denied
        try:
            new_status = CaseStatus(new_status)
        except ValueError:
            return Err(ValidationFailedError("new_status", f"Unknown status '{new_status}'"))

        async def work(uow: UnitOfWork) -> Case:
            case = await uow.store.get(case_id)

            if new_status == CLAIMED_STATUS[case.case_type]:
                if case.case_type == CaseType.APPLICATION:
                    return await uow.claims.open_application(case_id, actor.id)
                return await uow.claims.claim(case_id, actor.id)

            if is_terminal(new_status):
                resolution = None if case.case_type == CaseType.APPLICATION else Resolution.DISMISSED
                return await uow.state_machine.finalize(
                    case, new_status, actor.id, note=note, resolution=resolution
                )

            uow.state_machine.validate(case, new_status)
            if case.status == CLAIMED_STATUS[case.case_type]:
                return await uow.claims.release(case_id, actor.id)
            # Drafts are submitted by the applicant through submit_application
            raise InvalidTransitionError(case.status.value, new_status.value)

        return await self._run("transition", work)

    # =========================================================================
    # RESTRICTIONS
    # =========================================================================

    async def create_restriction(
        self,
        actor: Actor,
        template_id: str | None = None,
        details: str | None = None,
        subject_user_id: UUID | None = None,
        case_id: UUID | None = None,
        duration_hours: int | None = None,
        scope: str | None = None,
        reason: str | None = None,
        note: str | None = None,
    ) -> Result[Restriction]:
        """Create a restriction, optionally resolving the case it came from.

        With ``case_id`` the subject is taken from the case, and the case moves
        to its terminal status in the same transaction: reports and
        restriction requests to ``resolved``, applications to ``rejected``.
        A restriction request supplies its own template, duration, scope,
        reason and details wherever the caller leaves them out.
        """
        if denied := self._authorize("create_restriction", actor, StaffLevel.MODERATOR):
            return denied
        if subject_user_id is None and case_id is None:
            return Err(ValidationFailedError("subject_user_id", "A subject or a case is required"))

        async def work(uow: UnitOfWork) -> Restriction:
            case = await uow.store.get(case_id) if case_id else None
            data: dict[str, Any] = {
                "template_id": template_id,
                "details": details,
                "duration_hours": duration_hours,
                "scope": scope,
                "reason": reason,
            }

            if case is not None:
                if subject_user_id is not None and subject_user_id != case.subject_user_id:
                    raise ValidationFailedError("subject_user_id", "Subject does not match the case")
                to_status = CaseStatus.REJECTED if case.case_type == CaseType.APPLICATION else CaseStatus.RESOLVED
                uow.state_machine.check_finalize(case, to_status, actor.id)
                if isinstance(case, RestrictionRequestCase):
                    requested = {
                        "template_id": case.template_id,
                        "details": case.details,
                        "duration_hours": case.requested_duration_hours,
                        "scope": case.requested_scope,
                        "reason": case.reason,
                    }
                    data = {k: v if v is not None else requested[k] for k, v in data.items()}

            payload = _parse(
                RestrictionCreate,
                subject_user_id=case.subject_user_id if case is not None else subject_user_id,
                **{k: v for k, v in data.items() if v is not None},
            )
            restriction = await uow.resolver.create(
                RestrictionRequest(
                    subject_user_id=payload.subject_user_id,
                    template_id=payload.template_id,
                    details=payload.details,
                    duration_hours=payload.duration_hours,
                    scope=payload.scope,
                    reason=payload.reason,
                    source_case_id=case.id if case is not None else None,
                ),
                issued_by=actor.id,
            )

            if case is not None:
                await uow.state_machine.finalize(
                    case,
                    to_status,
                    actor.id,
                    note=note,
                    resolution=Resolution.RESTRICTED,
                    restriction_id=restriction.id,
                )
            return restriction

        return await self._run("create_restriction", work)

    async def revoke_restriction(self, actor: Actor, restriction_id: UUID) -> Result[Restriction]:
        """Lift an active restriction. Needs a higher tier than creating one."""
        if denied := self._authorize("revoke_restriction", actor, StaffLevel.HEAD_MOD):
            return denied
        return await self._run(
            "revoke_restriction",
            lambda uow: uow.resolver.revoke(restriction_id, actor.id),
        )

    # =========================================================================
    # ARCHIVAL & AUDIT
    # =========================================================================

    async def archive(self, actor: Actor, case_id: UUID) -> Result[Case]:
        """Remove a terminal case from the working set."""
        if denied := self._authorize("archive", actor, StaffLevel.MODERATOR):
            return denied

        async def work(uow: UnitOfWork) -> Case:
            case = await uow.store.get(case_id)
            if not is_terminal(case.status):
                raise InvalidTransitionError(case.status.value, "archived")
            archived_at = utcnow()
            await uow.store.update(case.id, case.version, {"archived_at": archived_at})
            await uow.audit.record(
                action=AuditAction.ARCHIVED,
                resource_type="case",
                resource_id=case.id,
                actor_id=actor.id,
            )
            return await uow.store.get(case.id, include_archived=True)

        return await self._run("archive", work)

    async def get_audit_log(self, actor: Actor, query: AuditLogQuery | None = None) -> Result[AuditLogResponse]:
        if denied := self._authorize("get_audit_log", actor, StaffLevel.HEAD_MOD):
            return denied
        query = query or AuditLogQuery()

        async def work(uow: UnitOfWork) -> AuditLogResponse:
            entries, total = await uow.audit.get_audit_log(
                actor_id=query.actor_id,
                action=query.action,
                resource_type=query.resource_type,
                resource_id=query.resource_id,
                start_date=query.start_date,
                end_date=query.end_date,
                limit=query.page_size,
                offset=query.offset,
            )
            return AuditLogResponse.create(
                items=[AuditLogEntry.model_validate(e) for e in entries],
                total=total,
                page=query.page,
                page_size=query.page_size,
            )

        return await self._run("get_audit_log", work)

    async def verify_audit_chain(
        self,
        actor: Actor,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
    ) -> Result[ChainVerificationResult]:
        if denied := self._authorize("verify_audit_chain", actor, StaffLevel.HEAD_MOD):
            return denied

        async def work(uow: UnitOfWork) -> ChainVerificationResult:
            result = await uow.audit.verify_chain(resource_type, resource_id)
            return ChainVerificationResult(
                is_valid=result.is_valid,
                verified_entries=result.entries_checked,
                broken_at_id=result.broken_at_id,
                verification_timestamp=result.verified_at,
            )

        return await self._run("verify_audit_chain", work)

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _unit_of_work(self, session: AsyncSession) -> UnitOfWork:
        store = CaseStore(session)
        audit = AuditService(session, chain_enabled=self.settings.audit_chain_enabled)
        state_machine = StatusStateMachine(store, audit)
        resolver = RestrictionPolicyResolver(
            session,
            audit,
            self.catalog,
            details_min_length=self.settings.restriction_details_min_length,
            custom_template_id=self.settings.custom_template_id,
        )
        return UnitOfWork(
            session=session,
            store=store,
            audit=audit,
            state_machine=state_machine,
            claims=ClaimManager(store, audit, state_machine, lease_seconds=self.settings.claim_lease_seconds),
            resolver=resolver,
            intake=CaseIntake(
                store,
                audit,
                state_machine,
                resolver,
                rejection_cooldown_days=self.settings.application_rejection_cooldown_days,
                draft_ttl_days=self.settings.application_draft_ttl_days,
            ),
        )

    def _authorize(self, operation: str, actor: Actor, required: StaffLevel) -> Err | None:
        if actor.has_level(required):
            return None
        logger.warning(
            f"{operation} denied for {actor.id}: requires {required.name}, has {actor.level.name}"
        )
        return Err(ForbiddenError(actor.id, required))

    async def _run(self, operation: str, work: Callable[[UnitOfWork], Awaitable[T]]) -> Result[T]:
        attempts = self.settings.max_conflict_retries + 1
        conflict: VersionConflictError | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with self.session_factory() as session, session.begin():
                    value = await work(self._unit_of_work(session))
                return Ok(value)
            except VersionConflictError as e:
                conflict = e
                logger.warning(f"{operation}: {e} (attempt {attempt}/{attempts})")
            except ModerationError as e:
                logger.info(f"{operation} rejected: {e.kind.value}: {e}")
                return Err(e)
            except SQLAlchemyError:
                logger.error(f"{operation} failed, transaction rolled back", exc_info=True)
                raise

        return Err(conflict)

    async def _build_detail(self, uow: UnitOfWork, case: Case) -> CaseDetail:
        active = await uow.resolver.get_active(case.subject_user_id)
        common = {"has_active_restriction": active is not None}

        if isinstance(case, ReportCase):
            return ReportDetail.model_validate(case).model_copy(
                update={
                    **common,
                    "other_reporters": await uow.store.other_reporters(case),
                    "total_reports": await uow.store.count_reports_against(case.subject_user_id),
                }
            )

        if isinstance(case, ApplicationCase):
            position = get_position(case.position_id) if case.position_id else None
            responses = sorted(
                case.responses,
                key=lambda r: position.sort_key(r.question_id) if position else 0,
            )
            return ApplicationDetail.model_validate(case).model_copy(
                update={
                    **common,
                    "position_title": position.title if position else None,
                    "responses": [ResponseView.model_validate(r) for r in responses],
                }
            )

        return RestrictionRequestDetail.model_validate(case).model_copy(update=common)
