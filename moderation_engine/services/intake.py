"""Case intake: creates reports, applications and restriction requests."""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select

from ..core.positions import Position, get_position
from ..models import (
    ApplicationCase,
    ApplicationResponse,
    AuditAction,
    CaseStatus,
    CaseType,
    ReportCase,
    RestrictionRequestCase,
    RestrictionScope,
    utcnow,
)
from ..schemas.cases import (
    ApplicationSubmission,
    ReportSubmission,
    ResponseInput,
    RestrictionRequestSubmission,
)
from .audit import AuditService
from .case_store import OPEN_STATUSES, CaseStore
from .errors import ValidationFailedError
from .restrictions import RestrictionPolicyResolver, RestrictionRequest
from .state_machine import StatusStateMachine, is_terminal

logger = logging.getLogger(__name__)


class CaseIntake:
    """Validates inbound submissions and opens cases for them."""

    def __init__(
        self,
        store: CaseStore,
        audit: AuditService,
        state_machine: StatusStateMachine,
        resolver: RestrictionPolicyResolver,
        rejection_cooldown_days: int = 7,
        draft_ttl_days: int = 7,
    ):
        self.store = store
        self.session = store.session
        self.audit = audit
        self.state_machine = state_machine
        self.resolver = resolver
        self.rejection_cooldown_days = rejection_cooldown_days
        self.draft_ttl_days = draft_ttl_days

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def submit_report(self, submission: ReportSubmission) -> ReportCase:
        """Open a report.

        Reports against a subject for a reason that already has an unhandled
        report are linked to the earliest one through ``duplicate_of``.
        """
        if submission.subject_user_id == submission.reporter_id:
            raise ValidationFailedError("subject_user_id", "You cannot report yourself")

        existing = await self.session.execute(
            select(ReportCase.id).where(
                ReportCase.reporter_id == submission.reporter_id,
                ReportCase.subject_user_id == submission.subject_user_id,
                ReportCase.status.in_(OPEN_STATUSES[CaseType.REPORT]),
                ReportCase.archived_at.is_(None),
            )
        )
        if existing.first() is not None:
            raise ValidationFailedError(
                "subject_user_id", "You already have an open report against this user"
            )

        primary = await self.store.find_primary_report(submission.subject_user_id, submission.reason)

        report = await self.store.create(
            ReportCase(
                subject_user_id=submission.subject_user_id,
                reporter_id=submission.reporter_id,
                reason=submission.reason,
                details=submission.details,
                status=CaseStatus.OPEN,
                duplicate_of=primary.id if primary else None,
            )
        )

        await self.audit.record(
            action=AuditAction.CREATED,
            resource_type="case",
            resource_id=report.id,
            actor_id=submission.reporter_id,
            details={
                "case_type": report.case_type.value,
                "reason": report.reason,
                "duplicate_of": report.duplicate_of,
            },
        )
        logger.info(f"Report {report.id} filed against {report.subject_user_id} ({report.reason})")
        return report

    # =========================================================================
    # APPLICATIONS
    # =========================================================================

    async def start_application(self, user_id: UUID, position_id: str) -> ApplicationCase:
        """Return the user's draft for the position, creating one if needed."""
        position = self._require_position(position_id)
        now = utcnow()

        current = await self._current_application(user_id, position.id)
        if current is not None:
            if current.status != CaseStatus.DRAFT:
                raise ValidationFailedError(
                    "position_id", "You already have an application in progress for this position"
                )
            if current.expires_at is None or current.expires_at > now:
                return current
            await self.store.update(current.id, current.version, {"archived_at": now})
            await self.audit.record(
                action=AuditAction.ARCHIVED,
                resource_type="case",
                resource_id=current.id,
                details={"reason": "draft_expired"},
            )

        await self._check_eligibility(user_id, position.id)

        draft = await self.store.create(
            ApplicationCase(
                subject_user_id=user_id,
                position_id=position.id,
                status=CaseStatus.DRAFT,
                expires_at=now + timedelta(days=self.draft_ttl_days),
            )
        )
        await self.audit.record(
            action=AuditAction.CREATED,
            resource_type="case",
            resource_id=draft.id,
            actor_id=user_id,
            details={"case_type": draft.case_type.value, "position_id": position.id},
        )
        return draft

    async def submit_application(self, submission: ApplicationSubmission) -> ApplicationCase:
        """Validate the answers and move the user's draft to ``submitted``."""
        position = self._require_position(submission.position_id)
        answers = self._validate_responses(position, submission.responses)

        draft = await self.start_application(submission.user_id, position.id)

        for response in answers.values():
            self.session.add(
                ApplicationResponse(
                    case_id=draft.id,
                    question_id=response.question_id,
                    answer=response.answer.strip(),
                    time_to_answer=response.time_to_answer,
                )
            )
        await self.session.flush()

        submitted = await self.state_machine.apply(
            draft,
            CaseStatus.SUBMITTED,
            submission.user_id,
            changes={
                "submitted_at": utcnow(),
                "time_to_complete": sum(r.time_to_answer for r in answers.values()),
                "expires_at": None,
            },
        )
        logger.info(f"Application {submitted.id} submitted for {position.id} by {submission.user_id}")
        return submitted

    # =========================================================================
    # RESTRICTION REQUESTS
    # =========================================================================

    async def request_restriction(
        self, submission: RestrictionRequestSubmission, requested_by: UUID
    ) -> RestrictionRequestCase:
        """Open a staff-initiated restriction request for review."""
        self.resolver.resolve_policy(
            RestrictionRequest(
                subject_user_id=submission.subject_user_id,
                template_id=submission.template_id,
                details=submission.details,
                duration_hours=submission.duration_hours,
                scope=submission.scope,
                reason=submission.reason,
            )
        )

        case = await self.store.create(
            RestrictionRequestCase(
                subject_user_id=submission.subject_user_id,
                status=CaseStatus.OPEN,
                template_id=submission.template_id,
                requested_duration_hours=submission.duration_hours,
                requested_scope=RestrictionScope(submission.scope) if submission.scope else None,
                requested_by=requested_by,
                reason=submission.reason,
                details=submission.details,
            )
        )
        await self.audit.record(
            action=AuditAction.CREATED,
            resource_type="case",
            resource_id=case.id,
            actor_id=requested_by,
            details={"case_type": case.case_type.value, "template_id": case.template_id},
        )
        return case

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    @staticmethod
    def _require_position(position_id: str) -> Position:
        position = get_position(position_id)
        if position is None or not position.active:
            raise ValidationFailedError("position_id", f"Position '{position_id}' is not open for applications")
        return position

    @staticmethod
    def _validate_responses(position: Position, responses: list[ResponseInput]) -> dict[str, ResponseInput]:
        known = {q.id for q in position.questions}
        answers: dict[str, ResponseInput] = {}
        for response in responses:
            if response.question_id not in known:
                raise ValidationFailedError("responses", f"Unknown question '{response.question_id}'")
            answers[response.question_id] = response

        missing = [
            qid for qid in sorted(position.required_question_ids, key=position.sort_key)
            if qid not in answers or not answers[qid].answer.strip()
        ]
        if missing:
            raise ValidationFailedError("responses", f"Please answer all required questions: {', '.join(missing)}")
        return answers

    async def _current_application(self, user_id: UUID, position_id: str) -> ApplicationCase | None:
        result = await self.session.execute(
            select(ApplicationCase)
            .where(
                ApplicationCase.subject_user_id == user_id,
                ApplicationCase.position_id == position_id,
                ApplicationCase.archived_at.is_(None),
            )
            .order_by(ApplicationCase.created_at.desc())
        )
        for application in result.scalars().all():
            if not is_terminal(application.status):
                return application
        return None

    async def _check_eligibility(self, user_id: UUID, position_id: str) -> None:
        approved = await self.session.execute(
            select(ApplicationCase.id).where(
                ApplicationCase.subject_user_id == user_id,
                ApplicationCase.position_id == position_id,
                ApplicationCase.status == CaseStatus.APPROVED,
            )
        )
        if approved.first() is not None:
            raise ValidationFailedError("position_id", "You have already been accepted for this position")

        if self.rejection_cooldown_days <= 0:
            return
        since = utcnow() - timedelta(days=self.rejection_cooldown_days)
        result = await self.session.execute(
            select(ApplicationCase.id)
            .where(
                ApplicationCase.subject_user_id == user_id,
                ApplicationCase.position_id == position_id,
                ApplicationCase.status == CaseStatus.REJECTED,
                ApplicationCase.resolved_at > since,
            )
            .limit(1)
        )
        if result.first() is not None:
            raise ValidationFailedError(
                "position_id",
                f"You were recently rejected for this position. "
                f"Please wait {self.rejection_cooldown_days} days before reapplying",
            )
