"""
Tests for the Restriction Policy Resolver - Verifying Restriction Guarantees.

These tests verify:
1. POLICY: Templates, forced durations, permanence and validation
2. UNIQUENESS: At most one active restriction per subject
3. ATOMICITY: Restricting and resolving a case commit together or not at all
4. REVOKE: Separation of duties and terminal revocation
5. ACCESS: Full restrictions block everything, partial only mutations
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from moderation_engine.core.templates import TemplateCatalog
from moderation_engine.models import (
    Case,
    CaseStatus,
    Resolution,
    Restriction,
    RestrictionScope,
    utcnow,
)
from moderation_engine.services import (
    ErrorKind,
    RestrictionPolicyResolver,
    RestrictionRequest,
    StatusStateMachine,
    ValidationFailedError,
)

DETAILS = "Repeated phishing links sent to members"


@pytest.fixture
def resolver() -> RestrictionPolicyResolver:
    """Resolver for pure policy checks; no database access needed."""
    return RestrictionPolicyResolver(session=None, audit=None, catalog=TemplateCatalog())


async def count_active(session_factory, subject_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Restriction.id)).where(
                Restriction.subject_user_id == subject_id,
                Restriction.active.is_(True),
            )
        )
        return result.scalar_one()


# =============================================================================
# TEST: POLICY RESOLUTION
# =============================================================================


class TestPolicy:
    """Tests for turning a template and overrides into terms."""

    @pytest.mark.parametrize("duration", [None, 0, 1, 500, -1])
    def test_permanent_template_ignores_duration(self, resolver, duration):
        """The scam template always yields a permanent restriction."""
        policy = resolver.resolve_policy(
            RestrictionRequest(uuid4(), "scam", DETAILS, duration_hours=duration)
        )

        assert policy.end_at is None
        assert policy.is_permanent

    def test_template_default_duration(self, resolver):
        now = utcnow()

        policy = resolver.resolve_policy(RestrictionRequest(uuid4(), "harassment", DETAILS), now=now)

        assert policy.start_at == now
        assert policy.end_at == now + timedelta(hours=336)
        assert policy.reason == "Harassment"
        assert policy.scope == RestrictionScope.FULL

    def test_duration_override(self, resolver):
        now = utcnow()

        policy = resolver.resolve_policy(
            RestrictionRequest(uuid4(), "tou_violation", DETAILS, duration_hours=5), now=now
        )

        assert policy.end_at == now + timedelta(hours=5)

    def test_permanent_override_on_regular_template(self, resolver):
        """A caller can make any non-forced template permanent."""
        policy = resolver.resolve_policy(
            RestrictionRequest(uuid4(), "impersonation", DETAILS, duration_hours=-1)
        )

        assert policy.end_at is None

    def test_scope_defaults_and_override(self, resolver):
        spam = resolver.resolve_policy(RestrictionRequest(uuid4(), "spam", DETAILS))
        forced_full = resolver.resolve_policy(
            RestrictionRequest(uuid4(), "spam", DETAILS, scope=RestrictionScope.FULL)
        )
        from_string = resolver.resolve_policy(RestrictionRequest(uuid4(), "harassment", DETAILS, scope="partial"))

        assert spam.scope == RestrictionScope.PARTIAL
        assert forced_full.scope == RestrictionScope.FULL
        assert from_string.scope == RestrictionScope.PARTIAL

    @pytest.mark.parametrize(
        "request_kwargs,field",
        [
            ({"template_id": "nonexistent"}, "template_id"),
            ({"template_id": "scam", "details": "too short"}, "details"),
            ({"template_id": "scam", "details": "          padded   "}, "details"),
            ({"template_id": "custom"}, "reason"),
            ({"template_id": "custom", "reason": "   "}, "reason"),
            ({"template_id": "spam", "duration_hours": -5}, "duration_hours"),
            ({"template_id": "spam", "duration_hours": 10**9}, "duration_hours"),
            ({"template_id": "spam", "duration_hours": 10**13}, "duration_hours"),
        ],
    )
    def test_validation_failures(self, resolver, request_kwargs, field):
        kwargs = {"subject_user_id": uuid4(), "details": DETAILS, **request_kwargs}

        with pytest.raises(ValidationFailedError) as exc_info:
            resolver.resolve_policy(RestrictionRequest(**kwargs))

        assert exc_info.value.field == field

    def test_custom_template_uses_caller_reason(self, resolver):
        policy = resolver.resolve_policy(
            RestrictionRequest(uuid4(), "custom", DETAILS, reason="Ban evasion")
        )

        assert policy.reason == "Ban evasion"
        assert policy.end_at is not None

    def test_details_minimum_is_configurable(self):
        resolver = RestrictionPolicyResolver(None, None, TemplateCatalog(), details_min_length=3)

        policy = resolver.resolve_policy(RestrictionRequest(uuid4(), "spam", "abc"))

        assert policy.template.id == "spam"


# =============================================================================
# TEST: ONE ACTIVE RESTRICTION PER SUBJECT
# =============================================================================


class TestUniqueness:
    """Tests for keeping one active restriction per subject."""

    async def test_revoke_then_restrict_again(self, service, moderator, head_mod, subject_id):
        """A second restriction is refused until the first is revoked."""
        first = await service.create_restriction(
            moderator, "harassment", DETAILS, subject_user_id=subject_id
        )
        assert first.ok
        assert first.value.active

        second = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)
        assert second.kind == ErrorKind.ALREADY_RESTRICTED
        assert second.error.restriction_id == first.value.id

        revoked = await service.revoke_restriction(head_mod, first.value.id)
        assert revoked.ok
        assert revoked.value.active is False
        assert revoked.value.revoked_by == head_mod.id
        assert revoked.value.revoked_at is not None

        third = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)
        assert third.ok
        assert third.value.id != first.value.id

    async def test_concurrent_creation_has_one_winner(
        self, service, session_factory, moderator, other_moderator, subject_id
    ):
        """Simultaneous restrictions for one subject: one success, the rest AlreadyRestricted."""
        results = await asyncio.gather(
            service.create_restriction(moderator, "harassment", DETAILS, subject_user_id=subject_id),
            service.create_restriction(other_moderator, "spam", DETAILS, subject_user_id=subject_id),
            service.create_restriction(moderator, "tou_violation", DETAILS, subject_user_id=subject_id),
        )

        assert sum(1 for r in results if r.ok) == 1
        assert all(r.kind == ErrorKind.ALREADY_RESTRICTED for r in results if not r.ok)
        assert await count_active(session_factory, subject_id) == 1

    async def test_unique_index_refuses_second_active_row(self, session, subject_id):
        """Even bypassing the pre-check, the database refuses a second active row."""
        from sqlalchemy.exc import IntegrityError

        for template in ("spam", "harassment"):
            session.add(
                Restriction(
                    subject_user_id=subject_id,
                    template_id=template,
                    reason=template,
                    details=DETAILS,
                    scope=RestrictionScope.FULL,
                    issued_by=uuid4(),
                )
            )
        with pytest.raises(IntegrityError):
            await session.flush()

    async def test_lapsed_restriction_does_not_block(self, service, session_factory, moderator, subject_id):
        """A restriction past its end date is expired in place of blocking."""
        first = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(Restriction)
                .where(Restriction.id == first.value.id)
                .values(end_at=utcnow() - timedelta(hours=1))
            )

        second = await service.create_restriction(moderator, "harassment", DETAILS, subject_user_id=subject_id)

        assert second.ok
        history = await service.list_restrictions(moderator, subject_id)
        expired = next(r for r in history.value if r.id == first.value.id)
        assert expired.active is False
        assert expired.revoked_by is None
        assert expired.revoked_at is not None


# =============================================================================
# TEST: RESTRICT-AND-RESOLVE ATOMICITY
# =============================================================================


class TestResolveWithRestriction:
    """Tests for resolving cases with a restriction."""

    async def test_scam_report_resolution(self, service, report, moderator):
        """Nine characters fail; ten create a permanent restriction and resolve the report."""
        await service.claim(moderator, report.id)

        too_short = await service.create_restriction(
            moderator, "scam", "x" * 9, case_id=report.id, duration_hours=24
        )
        assert too_short.kind == ErrorKind.VALIDATION_FAILED
        assert too_short.error.field == "details"

        result = await service.create_restriction(
            moderator, "scam", "x" * 10, case_id=report.id, duration_hours=24
        )
        assert result.ok
        restriction = result.value
        assert restriction.end_at is None
        assert restriction.subject_user_id == report.subject_user_id
        assert restriction.source_case_id == report.id

        detail = await service.get_case_detail(moderator, report.id)
        assert detail.value.status == CaseStatus.RESOLVED.value
        assert detail.value.resolution == Resolution.RESTRICTED.value
        assert detail.value.restriction_id == restriction.id
        assert detail.value.has_active_restriction is True

    async def test_failure_between_writes_persists_neither(
        self, service, session_factory, report, moderator, monkeypatch
    ):
        """If resolving the case fails after the restriction is written, both roll back."""
        await service.claim(moderator, report.id)

        async def fail_finalize(self, *args, **kwargs):
            raise RuntimeError("store went away")

        monkeypatch.setattr(StatusStateMachine, "finalize", fail_finalize)

        with pytest.raises(RuntimeError):
            await service.create_restriction(moderator, "scam", "x" * 10, case_id=report.id)

        assert await count_active(session_factory, report.subject_user_id) == 0
        async with session_factory() as session:
            case = await session.get(Case, report.id)
            assert case.status == CaseStatus.ASSIGNED
            assert case.restriction_id is None

    async def test_restricting_requires_the_claim(self, service, report, moderator, other_moderator, session_factory):
        """Another moderator's claim blocks the restriction too."""
        await service.claim(moderator, report.id)

        result = await service.create_restriction(other_moderator, "spam", DETAILS, case_id=report.id)

        assert result.kind == ErrorKind.NOT_CLAIMED_BY_ACTOR
        assert await count_active(session_factory, report.subject_user_id) == 0

    async def test_already_restricted_subject_keeps_case_open(self, service, report, moderator, session_factory):
        """AlreadyRestricted leaves the case in the actor's hands."""
        await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=report.subject_user_id)
        await service.claim(moderator, report.id)

        result = await service.create_restriction(moderator, "harassment", DETAILS, case_id=report.id)

        assert result.kind == ErrorKind.ALREADY_RESTRICTED
        detail = await service.get_case_detail(moderator, report.id)
        assert detail.value.status == CaseStatus.ASSIGNED.value
        assert detail.value.claimed_by == moderator.id

    async def test_application_restriction_rejects_application(self, service, application, moderator):
        result = await service.create_restriction(
            moderator, "inappropriate_content", DETAILS, case_id=application.id, note="Account restricted"
        )

        assert result.ok
        detail = await service.get_case_detail(moderator, application.id)
        assert detail.value.status == CaseStatus.REJECTED.value
        assert detail.value.feedback_note == "Account restricted"

    async def test_restriction_request_uses_requested_terms(self, service, trial_mod, moderator, subject_id):
        """A restriction request supplies template, scope and details."""
        request = await service.request_restriction(
            trial_mod, subject_id, "spam", DETAILS, duration_hours=12, scope="full"
        )
        assert request.ok
        await service.claim(moderator, request.value.id)

        result = await service.create_restriction(moderator, case_id=request.value.id)

        assert result.ok
        restriction = result.value
        assert restriction.template_id == "spam"
        assert restriction.scope == RestrictionScope.FULL
        assert restriction.end_at == restriction.start_at + timedelta(hours=12)

    async def test_subject_mismatch_is_rejected(self, service, report, moderator):
        await service.claim(moderator, report.id)

        result = await service.create_restriction(
            moderator, "spam", DETAILS, case_id=report.id, subject_user_id=uuid4()
        )

        assert result.kind == ErrorKind.VALIDATION_FAILED
        assert result.error.field == "subject_user_id"

    async def test_trial_mods_cannot_restrict(self, service, trial_mod, subject_id):
        result = await service.create_restriction(trial_mod, "spam", DETAILS, subject_user_id=subject_id)

        assert result.kind == ErrorKind.FORBIDDEN

    async def test_oversized_duration_is_rejected(self, service, moderator, subject_id):
        """Durations past the datetime range fail validation instead of raising."""
        result = await service.create_restriction(
            moderator, "harassment", DETAILS, subject_user_id=subject_id, duration_hours=10**9
        )

        assert result.kind == ErrorKind.VALIDATION_FAILED
        assert result.error.field == "duration_hours"


# =============================================================================
# TEST: REVOKE
# =============================================================================


class TestRevoke:
    """Tests for lifting restrictions."""

    async def test_moderators_cannot_revoke(self, service, moderator, subject_id):
        """Creating needs a moderator; lifting needs a head moderator."""
        created = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)

        result = await service.revoke_restriction(moderator, created.value.id)

        assert result.kind == ErrorKind.FORBIDDEN
        assert result.error.required_level == 3

    async def test_revoked_restriction_is_terminal(self, service, moderator, head_mod, subject_id):
        """Revoking twice is NotActive."""
        created = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)
        await service.revoke_restriction(head_mod, created.value.id)

        again = await service.revoke_restriction(head_mod, created.value.id)

        assert again.kind == ErrorKind.NOT_ACTIVE

    async def test_revoke_unknown_restriction(self, service, head_mod):
        result = await service.revoke_restriction(head_mod, uuid4())

        assert result.kind == ErrorKind.NOT_FOUND


# =============================================================================
# TEST: ACCESS CHECKS
# =============================================================================


class TestAccess:
    """Tests for enforcing restrictions."""

    async def test_unrestricted_subject(self, service, subject_id):
        result = await service.check_access(subject_id)

        assert result.value.allowed is True
        assert result.value.restriction is None

    async def test_full_restriction_blocks_reads(self, service, moderator, subject_id):
        await service.create_restriction(moderator, "harassment", DETAILS, subject_user_id=subject_id)

        assert (await service.check_access(subject_id, mutating=False)).value.allowed is False
        assert (await service.check_access(subject_id, mutating=True)).value.allowed is False

    async def test_partial_restriction_blocks_only_mutations(self, service, moderator, subject_id):
        await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)

        read = await service.check_access(subject_id, mutating=False)
        write = await service.check_access(subject_id, mutating=True)

        assert read.value.allowed is True
        assert write.value.allowed is False
        assert write.value.restriction.scope == RestrictionScope.PARTIAL.value


# =============================================================================
# TEST: TEMPLATE CATALOG
# =============================================================================


class TestTemplates:
    """Tests for the read-only template catalog."""

    async def test_list_templates(self, service):
        templates = {t.id: t for t in (await service.list_templates()).value}

        assert set(templates) == {
            "tou_violation",
            "inappropriate_content",
            "harassment",
            "impersonation",
            "spam",
            "scam",
            "custom",
        }
        assert templates["scam"].is_permanent
        assert templates["scam"].forces_duration
        assert templates["harassment"].default_duration_hours == 336
        assert not templates["custom"].forces_duration
