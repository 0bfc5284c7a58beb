from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.domain.models import UploadFile
from uploadgate.domain.state import (
    FILE_FAILED,
    FILE_STORED,
    QUOTA_FILE_STATUSES,
    file_sources_for,
)


@dataclass(frozen=True)
class QuotaUsage:
    file_count: int
    total_bytes: int


async def get_quota_usage(session: AsyncSession, upload_request_id: str) -> QuotaUsage:
    # Always hit the database; cached usage would let concurrent submissions slip past limits.
    result = await session.execute(
        select(
            func.count(UploadFile.id),
            func.coalesce(func.sum(UploadFile.size_bytes), 0),
        ).where(
            UploadFile.upload_request_id == upload_request_id,
            UploadFile.status.in_(QUOTA_FILE_STATUSES),
        )
    )
    count, total = result.one()
    return QuotaUsage(file_count=int(count or 0), total_bytes=int(total or 0))


async def insert_within_quota(
    session: AsyncSession,
    *,
    values: dict[str, Any],
    max_files: int,
    max_total_bytes: int,
) -> bool:
    """Insert an upload file row only if the request is still under quota.

    The count/byte check and the insert run as one ``INSERT ... SELECT`` so two
    racing submissions cannot both observe the pre-insert usage.
    """
    table = UploadFile.__table__
    usage = (
        select(
            func.count(UploadFile.id).label("file_count"),
            func.coalesce(func.sum(UploadFile.size_bytes), 0).label("total_bytes"),
        )
        .where(
            UploadFile.upload_request_id == values["upload_request_id"],
            UploadFile.status.in_(QUOTA_FILE_STATUSES),
        )
        .subquery()
    )
    columns = list(values)
    source = (
        select(*[literal(values[name], type_=table.c[name].type).label(name) for name in columns])
        .select_from(usage)
        .where(
            usage.c.file_count < max_files,
            usage.c.total_bytes + int(values["size_bytes"]) <= max_total_bytes,
        )
    )
    result = await session.execute(insert(UploadFile).from_select(columns, source))
    return result.rowcount == 1


async def get_file_for_request(
    session: AsyncSession,
    *,
    upload_request_id: str,
    upload_file_id: str,
    for_update: bool = False,
) -> UploadFile | None:
    # Scope by the owning request so a token cannot reach another request's files.
    stmt = select(UploadFile).where(
        UploadFile.id == upload_file_id,
        UploadFile.upload_request_id == upload_request_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def list_files_for_request(session: AsyncSession, upload_request_id: str) -> list[UploadFile]:
    result = await session.execute(
        select(UploadFile)
        .where(UploadFile.upload_request_id == upload_request_id)
        .order_by(UploadFile.created_at.asc(), UploadFile.id.asc())
    )
    return list(result.scalars().all())


async def count_stored(session: AsyncSession, upload_request_id: str) -> int:
    result = await session.execute(
        select(func.count(UploadFile.id)).where(
            UploadFile.upload_request_id == upload_request_id,
            UploadFile.status == FILE_STORED,
        )
    )
    return int(result.scalar() or 0)


async def mark_failed(session: AsyncSession, upload_file_id: str, *, reason: str) -> bool:
    # Only unfinished rows may fail; a stored file is never demoted.
    result = await session.execute(
        update(UploadFile)
        .where(UploadFile.id == upload_file_id, UploadFile.status.in_(file_sources_for(FILE_FAILED)))
        .values(status=FILE_FAILED, failure_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_stored(
    session: AsyncSession,
    upload_file_id: str,
    *,
    document_id: str,
    size_bytes: int,
    sha256: str | None,
    uploaded_at: datetime,
) -> bool:
    result = await session.execute(
        update(UploadFile)
        .where(UploadFile.id == upload_file_id, UploadFile.status.in_(file_sources_for(FILE_STORED)))
        .values(
            status=FILE_STORED,
            document_id=document_id,
            size_bytes=size_bytes,
            sha256=sha256,
            uploaded_at=uploaded_at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
