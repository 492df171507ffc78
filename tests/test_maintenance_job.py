"""
Tests for the Maintenance Job.

These tests verify:
1. EXPIRY: Restrictions past their end date are deactivated by the system
2. ARCHIVAL: Old terminal cases and abandoned drafts leave the working set
3. ALERTING: Failures are posted to the webhook and re-raised
"""

import functools
from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select, update

from moderation_engine.core.config import Settings
from moderation_engine.jobs import maintenance
from moderation_engine.jobs.maintenance import run_maintenance_job, send_alert
from moderation_engine.models import AuditAction, AuditLog, Restriction, RestrictionScope, utcnow
from moderation_engine.services import ErrorKind, RestrictionPolicyResolver

DETAILS = "Repeated phishing links sent to members"


@pytest.fixture
def webhook(monkeypatch):
    """Capture webhook posts instead of sending them."""
    received = []
    status = {"code": 200}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(status["code"])

    monkeypatch.setattr(
        maintenance.httpx,
        "AsyncClient",
        functools.partial(real_client, transport=httpx.MockTransport(handler)),
    )
    return received, status


# =============================================================================
# TEST: RESTRICTION EXPIRY
# =============================================================================


class TestExpiry:
    """Tests for deactivating lapsed restrictions."""

    async def test_lapsed_restriction_is_expired(self, service, session_factory, settings, moderator, subject_id):
        created = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(Restriction)
                .where(Restriction.id == created.value.id)
                .values(end_at=utcnow() - timedelta(minutes=1))
            )

        results = await run_maintenance_job(session_factory=session_factory, settings=settings)

        assert results["restrictions_expired"] == 1
        assert results["completed_at"] is not None

        async with session_factory() as session:
            restriction = await session.get(Restriction, created.value.id)
            entry = (
                await session.execute(
                    select(AuditLog).where(
                        AuditLog.resource_id == restriction.id,
                        AuditLog.action == AuditAction.RESTRICTION_EXPIRED,
                    )
                )
            ).scalar_one()

        assert restriction.active is False
        assert restriction.is_expired
        assert restriction.revoked_by is None
        assert entry.actor_id is None

        access = await service.check_access(subject_id)
        assert access.value.allowed is True

    async def test_live_and_permanent_restrictions_stay(self, service, session_factory, settings, moderator):
        await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=uuid4())
        await service.create_restriction(moderator, "scam", DETAILS, subject_user_id=uuid4())

        results = await run_maintenance_job(session_factory=session_factory, settings=settings)

        assert results["restrictions_expired"] == 0

    async def test_expiry_reads_only_the_stored_terms(self, session_factory, settings, subject_id):
        """Restrictions from templates that left the catalog still expire."""
        async with session_factory() as session, session.begin():
            session.add(
                Restriction(
                    subject_user_id=subject_id,
                    template_id="retired_template",
                    reason="Retired",
                    details=DETAILS,
                    scope=RestrictionScope.FULL,
                    end_at=utcnow() - timedelta(hours=1),
                    issued_by=uuid4(),
                )
            )

        results = await run_maintenance_job(session_factory=session_factory, settings=settings)

        assert results["restrictions_expired"] == 1

    async def test_expired_restriction_cannot_be_revoked(
        self, service, session_factory, settings, moderator, head_mod, subject_id
    ):
        created = await service.create_restriction(moderator, "spam", DETAILS, subject_user_id=subject_id)

        await run_maintenance_job(session_factory=session_factory, settings=settings, now=utcnow() + timedelta(days=3))

        result = await service.revoke_restriction(head_mod, created.value.id)
        assert result.kind == ErrorKind.NOT_ACTIVE


# =============================================================================
# TEST: ARCHIVAL
# =============================================================================


class TestArchival:
    """Tests for retention-based archival."""

    async def test_old_terminal_cases_are_archived(self, service, session_factory, settings, trial_mod, subject_id):
        resolved = (await service.submit_report(subject_id, "Spam", "", uuid4())).value
        still_open = (await service.submit_report(subject_id, "Spam", "", uuid4())).value
        await service.claim(trial_mod, resolved.id)
        await service.transition(trial_mod, resolved.id, "resolved")

        results = await run_maintenance_job(
            session_factory=session_factory,
            settings=settings,
            now=utcnow() + timedelta(days=settings.archive_after_days + 1),
        )

        assert results["cases_archived"] == 1
        assert (await service.get_case_detail(trial_mod, resolved.id)).kind == ErrorKind.NOT_FOUND
        assert (await service.get_case_detail(trial_mod, still_open.id)).ok

    async def test_recent_terminal_cases_are_kept(self, service, session_factory, settings, report, trial_mod):
        await service.claim(trial_mod, report.id)
        await service.transition(trial_mod, report.id, "resolved")

        results = await run_maintenance_job(session_factory=session_factory, settings=settings)

        assert results["cases_archived"] == 0

    async def test_abandoned_drafts_are_archived(self, service, session_factory, settings, trial_mod):
        draft = (await service.start_application(uuid4(), "moderator")).value

        results = await run_maintenance_job(
            session_factory=session_factory,
            settings=settings,
            now=utcnow() + timedelta(days=settings.application_draft_ttl_days + 1),
        )

        assert results["drafts_archived"] == 1
        assert (await service.get_case_detail(trial_mod, draft.id)).kind == ErrorKind.NOT_FOUND


# =============================================================================
# TEST: ALERTING
# =============================================================================


class TestAlerting:
    """Tests for job failure alerts."""

    async def test_alert_posts_to_webhook(self, webhook):
        received, _ = webhook
        settings = Settings(_env_file=None, alert_webhook_url="https://alerts.example.com/hook")

        await send_alert("Disk full", "No space left", severity="critical", details={"disk": "/"}, settings=settings)

        assert len(received) == 1
        payload = received[0].read()
        assert b'"severity":"critical"' in payload.replace(b" ", b"")
        assert received[0].url == "https://alerts.example.com/hook"

    async def test_no_webhook_configured(self, webhook, settings):
        received, _ = webhook

        await send_alert("Disk full", "No space left", settings=settings)

        assert received == []

    async def test_webhook_failure_is_logged_not_raised(self, webhook, caplog):
        _, status = webhook
        status["code"] = 500
        settings = Settings(_env_file=None, alert_webhook_url="https://alerts.example.com/hook")

        await send_alert("Disk full", "No space left", settings=settings)

        assert "Failed to send webhook alert" in caplog.text

    async def test_job_failure_alerts_and_reraises(self, session_factory, webhook, monkeypatch):
        received, _ = webhook
        settings = Settings(_env_file=None, alert_webhook_url="https://alerts.example.com/hook")

        async def broken_expiry(self, now=None):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(RestrictionPolicyResolver, "expire_due", broken_expiry)

        with pytest.raises(RuntimeError):
            await run_maintenance_job(session_factory=session_factory, settings=settings)

        assert len(received) == 1
        assert b"connection reset" in received[0].read()
