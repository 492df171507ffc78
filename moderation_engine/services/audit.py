"""Audit service: append-only record of claims, transitions and restriction decisions.

Entries form one hash chain per resource: each entry hashes its own content
together with the previous entry's hash for the same case or restriction.
Writes to a resource are serialized by its version check, so its chain never
forks.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import hash_content, verify_content_hash
from ..models import AuditAction, AuditLog, utcnow


@dataclass
class ChainVerification:
    """Outcome of an audit chain check."""
    is_valid: bool
    entries_checked: int
    broken_at_id: int | None = None
    verified_at: datetime | None = None


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(details, default=str))


def _chain_payload(entry: AuditLog) -> str:
    details_json = json.dumps(entry.details or {}, sort_keys=True)
    return "|".join([
        entry.previous_hash or "",
        entry.action.value,
        entry.resource_type,
        str(entry.resource_id),
        str(entry.actor_id) if entry.actor_id else "",
        details_json,
        entry.created_at.isoformat(),
    ])


class AuditService:
    """Service for audit logging and accountability queries."""

    def __init__(self, session: AsyncSession, chain_enabled: bool = True):
        self.session = session
        self.chain_enabled = chain_enabled

    async def record(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Append an audit event to the current transaction."""
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=_jsonable(details or {}),
            created_at=utcnow(),
        )

        if self.chain_enabled:
            entry.previous_hash = await self._latest_hash(resource_type, resource_id)
            entry.entry_hash = hash_content(_chain_payload(entry))

        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_audit_log(
        self,
        actor_id: UUID | None = None,
        action: AuditAction | None = None,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[AuditLog], int]:
        """Query the audit log with filters, newest first."""
        query = select(AuditLog)

        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        if action:
            query = query.where(AuditLog.action == action)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if start_date:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date:
            query = query.where(AuditLog.created_at <= end_date)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(AuditLog.id.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)

        return result.scalars().all(), total

    async def verify_chain(
        self,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
    ) -> ChainVerification:
        """Verify the hash chain of every resource (or a single one)."""
        query = select(AuditLog).order_by(AuditLog.id.asc())
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)

        entries = (await self.session.execute(query)).scalars().all()
        last_hash: dict[tuple[str, UUID], str | None] = {}

        for checked, entry in enumerate(entries, start=1):
            key = (entry.resource_type, entry.resource_id)
            expected_previous = last_hash.get(key)
            if entry.previous_hash != expected_previous or not entry.entry_hash or not verify_content_hash(
                _chain_payload(entry), entry.entry_hash
            ):
                return ChainVerification(
                    is_valid=False,
                    entries_checked=checked,
                    broken_at_id=entry.id,
                    verified_at=utcnow(),
                )
            last_hash[key] = entry.entry_hash

        return ChainVerification(
            is_valid=True,
            entries_checked=len(entries),
            verified_at=utcnow(),
        )

    async def _latest_hash(self, resource_type: str, resource_id: UUID) -> str | None:
        result = await self.session.execute(
            select(AuditLog.entry_hash)
            .where(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
            )
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
