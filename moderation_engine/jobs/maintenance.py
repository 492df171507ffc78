"""
Maintenance Job: periodic housekeeping for the moderation engine.

This module runs as a scheduled job (via cron, Celery, or similar) to:
- Expire restrictions whose end date has passed
- Archive terminal cases older than the retention window
- Archive application drafts that were never submitted

Typical cron schedule: */15 * * * * (every 15 minutes)
"""

import asyncio
import logging
import sys
import traceback
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import Settings, get_settings
from ..core.templates import TemplateCatalog
from ..models import ApplicationCase, AuditAction, Case, CaseStatus, utcnow
from ..services.audit import AuditService
from ..services.case_store import CaseStore
from ..services.errors import ModerationError
from ..services.restrictions import RestrictionPolicyResolver
from ..services.state_machine import TERMINAL_STATUSES

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    settings: Settings | None = None,
) -> None:
    """Log a job alert and post it to the configured webhook, if any."""
    settings = settings or get_settings()

    log_message = f"[JOB ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    if not settings.alerts_enabled:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": utcnow().isoformat(),
        "source": "moderation-maintenance",
        "details": details or {},
    }
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(settings.alert_webhook_url, json=payload, timeout=10)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


# =============================================================================
# ARCHIVAL
# =============================================================================


async def archive_cases(session: AsyncSession, audit: AuditService, cases: list[Case], reason: str) -> int:
    """Archive each case with a version check; cases that moved on are skipped."""
    store = CaseStore(session)
    archived = 0
    for case in cases:
        try:
            await store.update(case.id, case.version, {"archived_at": utcnow()})
        except ModerationError as e:
            logger.info(f"Skipping archival of case {case.id}: {e}")
            continue
        await audit.record(
            action=AuditAction.ARCHIVED,
            resource_type="case",
            resource_id=case.id,
            details={"reason": reason},
        )
        archived += 1
    return archived


async def find_stale_cases(session: AsyncSession, cutoff: datetime) -> list[Case]:
    result = await session.execute(
        select(Case).where(
            Case.status.in_(TERMINAL_STATUSES),
            Case.archived_at.is_(None),
            Case.resolved_at < cutoff,
        )
    )
    return list(result.scalars().all())


async def find_expired_drafts(session: AsyncSession, now: datetime) -> list[Case]:
    result = await session.execute(
        select(ApplicationCase).where(
            ApplicationCase.status == CaseStatus.DRAFT,
            ApplicationCase.archived_at.is_(None),
            ApplicationCase.expires_at < now,
        )
    )
    return list(result.scalars().all())


# =============================================================================
# JOB
# =============================================================================


async def run_maintenance_job(
    database_url: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the maintenance job.

    Each step commits in its own transaction, so a crash in a later step
    keeps the work of earlier ones.

    Args:
        database_url: Async database URL; ignored when session_factory is given
        session_factory: Existing session factory to reuse
        settings: Retention and alerting configuration
        now: Reference time (defaults to the current time)

    Returns:
        Job result summary
    """
    settings = settings or get_settings()
    start_time = utcnow()
    now = now or start_time
    logger.info(f"Starting maintenance job at {start_time.isoformat()}")

    engine = None
    if session_factory is None:
        engine = create_async_engine(database_url or settings.database_url_async)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "restrictions_expired": 0,
        "cases_archived": 0,
        "drafts_archived": 0,
    }

    try:
        # Step 1: Expire restrictions
        async with session_factory() as session, session.begin():
            audit = AuditService(session, chain_enabled=settings.audit_chain_enabled)
            resolver = RestrictionPolicyResolver(session, audit, TemplateCatalog())
            expired = await resolver.expire_due(now)
            results["restrictions_expired"] = len(expired)

        logger.info(f"Expired {len(expired)} restrictions")

        # Step 2: Archive terminal cases past retention
        async with session_factory() as session, session.begin():
            audit = AuditService(session, chain_enabled=settings.audit_chain_enabled)
            cutoff = now - timedelta(days=settings.archive_after_days)
            stale = await find_stale_cases(session, cutoff)
            results["cases_archived"] = await archive_cases(session, audit, stale, "retention")

        # Step 3: Archive abandoned drafts
        async with session_factory() as session, session.begin():
            audit = AuditService(session, chain_enabled=settings.audit_chain_enabled)
            drafts = await find_expired_drafts(session, now)
            results["drafts_archived"] = await archive_cases(session, audit, drafts, "draft_expired")

        logger.info(
            f"Archived {results['cases_archived']} cases and {results['drafts_archived']} drafts"
        )

    except Exception as e:
        logger.error(f"Maintenance job failed: {e}")

        await send_alert(
            title="Maintenance Job Failed",
            message="The moderation maintenance job crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],  # Last 500 chars
                "started_at": results["started_at"],
                "restrictions_expired_before_crash": results["restrictions_expired"],
            },
            settings=settings,
        )
        raise

    finally:
        if engine is not None:
            await engine.dispose()

    end_time = utcnow()
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Maintenance job completed in {results['duration_seconds']:.2f}s: "
        f"{results['restrictions_expired']} restrictions expired, "
        f"{results['cases_archived'] + results['drafts_archived']} cases archived"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the maintenance job."""
    import argparse

    parser = argparse.ArgumentParser(description="Run the moderation maintenance job")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Async database URL (defaults to DATABASE_URL from settings)",
    )
    parser.add_argument(
        "--archive-after-days",
        type=int,
        default=None,
        help="Archive terminal cases resolved more than this many days ago",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = get_settings()
    if args.archive_after_days is not None:
        settings = settings.model_copy(update={"archive_after_days": args.archive_after_days})

    try:
        results = asyncio.run(run_maintenance_job(database_url=args.database_url, settings=settings))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
