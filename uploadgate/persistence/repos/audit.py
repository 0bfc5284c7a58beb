from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.domain.models import AuditEvent
from uploadgate.persistence.guards import org_predicate


async def list_events(
    session: AsyncSession,
    *,
    org_id: str,
    entity_ids: list[str] | None = None,
    entity_type: str | None = None,
    event_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    # Scope all audit queries to an org to prevent cross-tenant leakage.
    stmt = select(AuditEvent).where(org_predicate(AuditEvent, org_id))
    if entity_ids is not None:
        stmt = stmt.where(AuditEvent.entity_id.in_(entity_ids))
    if entity_type:
        stmt = stmt.where(AuditEvent.entity_type == entity_type)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)

    stmt = stmt.order_by(AuditEvent.id.asc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
