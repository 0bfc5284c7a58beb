from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.domain.models import UploadFile, UploadRequest, Vendor, WorkOrder
from uploadgate.domain.state import FILE_STORED, OPEN_REQUEST_STATUSES, sources_for
from uploadgate.persistence.guards import org_predicate


@dataclass(frozen=True)
class RequestSummaryRow:
    request: UploadRequest
    stored_files: int


async def create_request(session: AsyncSession, **values: Any) -> UploadRequest:
    row = UploadRequest(**values)
    session.add(row)
    return row


async def get_request(
    session: AsyncSession,
    request_id: str,
    *,
    for_update: bool = False,
) -> UploadRequest | None:
    # Callers resolving vendor tokens have no org context; access is proven by the token hash.
    stmt = select(UploadRequest).where(UploadRequest.id == request_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_request_for_org(
    session: AsyncSession, *, org_id: str, request_id: str
) -> UploadRequest | None:
    # Return None for org mismatch to keep 404 semantics for staff callers.
    result = await session.execute(
        select(UploadRequest)
        .where(UploadRequest.id == request_id, org_predicate(UploadRequest, org_id))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition_status(
    session: AsyncSession,
    request_id: str,
    *,
    target: str,
    values: dict[str, Any] | None = None,
) -> bool:
    """Move a request to ``target`` only from a legal source state.

    Returns False when the row was already past the source states, which is how
    concurrent or repeated transitions become no-ops.
    """
    sources = sources_for(target)
    if not sources:
        return False
    result = await session.execute(
        update(UploadRequest)
        .where(UploadRequest.id == request_id, UploadRequest.status.in_(sources))
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_for_work_order(
    session: AsyncSession, *, org_id: str, work_order_id: str
) -> list[RequestSummaryRow]:
    stored = (
        select(
            UploadFile.upload_request_id.label("request_id"),
            func.count(UploadFile.id).label("stored_files"),
        )
        .where(UploadFile.status == FILE_STORED)
        .group_by(UploadFile.upload_request_id)
        .subquery()
    )
    stmt = (
        select(UploadRequest, func.coalesce(stored.c.stored_files, 0))
        .outerjoin(stored, stored.c.request_id == UploadRequest.id)
        .where(org_predicate(UploadRequest, org_id), UploadRequest.work_order_id == work_order_id)
        .order_by(UploadRequest.created_at.desc(), UploadRequest.id.desc())
    )
    result = await session.execute(stmt)
    return [RequestSummaryRow(request=row[0], stored_files=int(row[1])) for row in result.all()]


async def list_overdue_open(
    session: AsyncSession, *, now: datetime, limit: int
) -> list[UploadRequest]:
    result = await session.execute(
        select(UploadRequest)
        .where(
            and_(
                UploadRequest.status.in_(OPEN_REQUEST_STATUSES),
                UploadRequest.expires_at <= now,
            )
        )
        .order_by(UploadRequest.expires_at.asc(), UploadRequest.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_portal_labels(
    session: AsyncSession, *, org_id: str, work_order_id: str, vendor_id: str
) -> tuple[Vendor | None, WorkOrder | None]:
    # Labels come from tables owned by other systems; missing rows are tolerated.
    vendor = (
        await session.execute(
            select(Vendor).where(Vendor.id == vendor_id, org_predicate(Vendor, org_id))
        )
    ).scalar_one_or_none()
    work_order = (
        await session.execute(
            select(WorkOrder).where(WorkOrder.id == work_order_id, org_predicate(WorkOrder, org_id))
        )
    ).scalar_one_or_none()
    return vendor, work_order
