from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select, update

from uploadgate.domain.models import AuditEvent, UploadFile, UploadRequest, Vendor, WorkOrder
from uploadgate.domain.state import utc_now
from uploadgate.persistence.db import SessionLocal
from uploadgate.services.upload_requests import CreatedUploadRequest, create_request


def new_org_id() -> str:
    # Unique org ids keep assertions scoped even when tables are shared.
    return f"org-{uuid4().hex[:12]}"


async def create_test_request(
    *,
    org_id: str | None = None,
    work_order_id: str = "wo-1",
    vendor_id: str = "vendor-1",
    allowed_doc_types: list[str] | None = None,
    max_files: int | None = None,
    max_total_bytes: int | None = None,
    ttl_hours: int | None = None,
    message: str | None = None,
) -> tuple[str, CreatedUploadRequest]:
    org_id = org_id or new_org_id()
    async with SessionLocal() as session:
        created = await create_request(
            session,
            org_id=org_id,
            issuer_id="staff-1",
            work_order_id=work_order_id,
            vendor_id=vendor_id,
            request_email="billing@vendor.example",
            allowed_doc_types=allowed_doc_types,
            ttl_hours=ttl_hours,
            max_files=max_files,
            max_total_bytes=max_total_bytes,
            message=message,
        )
    return org_id, created


async def seed_labels(
    *,
    org_id: str,
    work_order_id: str = "wo-1",
    vendor_id: str = "vendor-1",
    title: str = "Replace boiler",
    number: int = 42,
    vendor_name: str = "Acme Heating",
) -> None:
    async with SessionLocal() as session:
        session.add(WorkOrder(id=work_order_id, org_id=org_id, title=title, work_order_number=number))
        session.add(Vendor(id=vendor_id, org_id=org_id, vendor_name=vendor_name))
        await session.commit()


async def force_expired(request_id: str) -> None:
    # Move the deadline into the past without touching status, as wall time would.
    async with SessionLocal() as session:
        await session.execute(
            update(UploadRequest)
            .where(UploadRequest.id == request_id)
            .values(expires_at=utc_now() - timedelta(minutes=1))
        )
        await session.commit()


async def fetch_request(request_id: str) -> UploadRequest | None:
    async with SessionLocal() as session:
        return await session.get(UploadRequest, request_id)


async def fetch_files(request_id: str) -> list[UploadFile]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(UploadFile).where(UploadFile.upload_request_id == request_id)
        )
        return list(result.scalars().all())


async def fetch_events(*, entity_id: str | None = None, event_type: str | None = None) -> list[AuditEvent]:
    async with SessionLocal() as session:
        stmt = select(AuditEvent)
        if entity_id:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        result = await session.execute(stmt.order_by(AuditEvent.id.asc()))
        return list(result.scalars().all())
