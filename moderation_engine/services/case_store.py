"""
Case Store: persistence for cases with optimistic concurrency.

Every write to a case is a single conditional UPDATE:
- The row must still carry the version the caller read
- Extra predicates (status, holder) can narrow the condition further
- The version is incremented in the same statement
- Zero affected rows means another writer got there first
"""

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Case, CaseStatus, CaseType, ReportCase
from .errors import NotFoundError, VersionConflictError

cases_table = Case.__table__

# Statuses that make up each queue
OPEN_STATUSES: dict[CaseType, tuple[CaseStatus, ...]] = {
    CaseType.REPORT: (CaseStatus.OPEN, CaseStatus.ASSIGNED),
    CaseType.RESTRICTION_REQUEST: (CaseStatus.OPEN, CaseStatus.ASSIGNED),
    CaseType.APPLICATION: (CaseStatus.SUBMITTED, CaseStatus.IN_REVIEW),
}


class CaseStore:
    """Reads and version-checked writes of cases."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, case_id: UUID, include_archived: bool = False) -> Case:
        """Load the current state of a case or raise NotFoundError.

        Archived cases are hidden by default.
        """
        query = select(Case).where(Case.id == case_id).execution_options(populate_existing=True)
        if not include_archived:
            query = query.where(Case.archived_at.is_(None))

        case = (await self.session.execute(query)).scalar_one_or_none()
        if case is None:
            raise NotFoundError("case", case_id)
        return case

    async def create(self, case: Case) -> Case:
        """Persist a new case at version 1."""
        case.version = 1
        self.session.add(case)
        await self.session.flush()
        return case

    async def update(
        self,
        case_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
        when: Sequence[ColumnElement[bool]] = (),
    ) -> Case:
        """Apply ``changes`` only if the stored version still matches.

        ``changes`` maps column names to values. Raises VersionConflictError
        when the row moved on, NotFoundError when it is gone or archived.
        Returns the session's instance of the case, refreshed from the row.
        It is the same object every read in this session returns, so later
        writes refresh it again; copy fields out to keep an earlier state.
        """
        stmt = (
            update(cases_table)
            .where(
                cases_table.c.id == case_id,
                cases_table.c.version == expected_version,
                cases_table.c.archived_at.is_(None),
                *when,
            )
            .values(**changes, version=cases_table.c.version + 1)
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            exists = await self.session.scalar(
                select(Case.id).where(Case.id == case_id, Case.archived_at.is_(None))
            )
            if exists is None:
                raise NotFoundError("case", case_id)
            raise VersionConflictError(case_id, expected_version)

        return await self.get(case_id, include_archived=True)

    async def list_open(
        self,
        case_type: CaseType,
        subject_user_id: UUID | None = None,
        reason: str | None = None,
        claimed_by: UUID | None = None,
        unclaimed_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Case], int]:
        """List the queue for one case type, newest first, with a total count."""
        query = select(Case).where(
            Case.case_type == case_type,
            Case.status.in_(OPEN_STATUSES[case_type]),
            Case.archived_at.is_(None),
        )

        if subject_user_id:
            query = query.where(Case.subject_user_id == subject_user_id)
        if reason:
            query = query.where(Case.reason == reason)
        if claimed_by:
            query = query.where(Case.claimed_by == claimed_by)
        if unclaimed_only:
            query = query.where(Case.claimed_by.is_(None))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(Case.created_at.desc(), Case.id).limit(limit).offset(offset)
        result = await self.session.execute(query)
        return result.scalars().all(), total

    async def count_reports_against(self, subject_user_id: UUID) -> int:
        """Total reports ever filed against a user."""
        result = await self.session.execute(
            select(func.count(Case.id)).where(
                Case.case_type == CaseType.REPORT,
                Case.subject_user_id == subject_user_id,
            )
        )
        return result.scalar_one()

    async def other_reporters(self, report: ReportCase) -> list[UUID]:
        """Reporters of other unhandled reports with the same subject and reason."""
        result = await self.session.execute(
            select(ReportCase.reporter_id)
            .where(
                ReportCase.subject_user_id == report.subject_user_id,
                ReportCase.reason == report.reason,
                ReportCase.id != report.id,
                ReportCase.status.in_(OPEN_STATUSES[CaseType.REPORT]),
                ReportCase.archived_at.is_(None),
            )
            .order_by(ReportCase.created_at)
        )
        return [rid for rid in result.scalars().all() if rid is not None]

    async def find_primary_report(self, subject_user_id: UUID, reason: str) -> ReportCase | None:
        """The earliest unhandled report for a subject and reason, if any."""
        result = await self.session.execute(
            select(ReportCase)
            .where(
                ReportCase.subject_user_id == subject_user_id,
                ReportCase.reason == reason,
                ReportCase.duplicate_of.is_(None),
                ReportCase.status.in_(OPEN_STATUSES[CaseType.REPORT]),
                ReportCase.archived_at.is_(None),
            )
            .order_by(ReportCase.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()
