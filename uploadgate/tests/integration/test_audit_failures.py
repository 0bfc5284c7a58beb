from __future__ import annotations

import logging

import pytest
from sqlalchemy import func, select

from uploadgate.domain.events import (
    ENTITY_UPLOAD_REQUEST,
    EVENT_FILE_UPLOADED,
    EVENT_FILE_URL_ISSUED,
    EVENT_REQUEST_COMPLETED,
    EVENT_REQUEST_CREATED,
    EVENT_REQUEST_OPENED,
    EVENT_REQUEST_REVOKED,
)
from uploadgate.domain.models import AuditEvent, Document
from uploadgate.domain.state import FILE_STORED, REQUEST_COMPLETED, REQUEST_PENDING, REQUEST_REVOKED
from uploadgate.persistence.db import SessionLocal, engine
from uploadgate.providers.storage.fake import FakeObjectStore
from uploadgate.services import upload_requests as lifecycle
from uploadgate.services.audit import record_event
from uploadgate.services.finalizer import finalize_upload
from uploadgate.services.signed_uploads import FileMeta, create_signed_upload_url
from uploadgate.tests.utils.factories import create_test_request, fetch_files, fetch_request


async def _break_audit_table() -> None:
    # Every audit insert now fails with "no such table" after the primary commit.
    async with engine.begin() as connection:
        await connection.run_sync(AuditEvent.__table__.drop)


def _failed_audit_types(caplog) -> list[str]:
    return [
        record.args[0]
        for record in caplog.records
        if record.name == "uploadgate.services.audit"
        and record.levelno == logging.ERROR
        and record.msg.startswith("audit_event_write_failed")
    ]


@pytest.mark.asyncio
async def test_record_event_reports_failure_without_raising(caplog) -> None:
    caplog.set_level(logging.ERROR, logger="uploadgate.services.audit")
    await _break_audit_table()

    async with SessionLocal() as session:
        written = await record_event(
            session,
            org_id="org-1",
            event_type=EVENT_REQUEST_OPENED,
            entity_type=ENTITY_UPLOAD_REQUEST,
            entity_id="req-1",
            actor_type="vendor",
            actor_id=None,
            metadata={"status": REQUEST_PENDING},
        )

    assert written is False
    assert _failed_audit_types(caplog) == [EVENT_REQUEST_OPENED]
    failure = next(record for record in caplog.records if record.name == "uploadgate.services.audit")
    assert failure.exc_info is not None


@pytest.mark.asyncio
async def test_vendor_flow_survives_a_broken_audit_trail(caplog) -> None:
    caplog.set_level(logging.ERROR, logger="uploadgate.services.audit")
    await _break_audit_table()

    _, created = await create_test_request(allowed_doc_types=["invoice"])
    assert (await fetch_request(created.request_id)).status == REQUEST_PENDING

    async with SessionLocal() as session:
        status = await lifecycle.get_portal_status(session, created.request_id, created.raw_secret)
    assert status.status == REQUEST_PENDING

    async with SessionLocal() as session:
        signed = await create_signed_upload_url(
            session,
            created.request_id,
            created.raw_secret,
            FileMeta(file_name="invoice.pdf", mime_type="application/pdf", size_bytes=1_000, doc_type="invoice"),
            object_store=FakeObjectStore(),
        )

    async with SessionLocal() as session:
        result = await finalize_upload(
            session, created.request_id, created.raw_secret, signed.upload_file_id, sha256="d" * 64
        )
    assert result.already_finalized is False

    async with SessionLocal() as session:
        completed = await lifecycle.mark_completed(session, created.request_id, created.raw_secret)
    assert completed.status == REQUEST_COMPLETED

    stored = await fetch_request(created.request_id)
    assert stored.status == REQUEST_COMPLETED
    assert stored.completed_at is not None
    files = await fetch_files(created.request_id)
    assert [item.status for item in files] == [FILE_STORED]
    assert files[0].document_id == result.document_id
    async with SessionLocal() as session:
        documents = (await session.execute(select(func.count()).select_from(Document))).scalar()
    assert documents == 1

    assert _failed_audit_types(caplog) == [
        EVENT_REQUEST_CREATED,
        EVENT_REQUEST_OPENED,
        EVENT_FILE_URL_ISSUED,
        EVENT_FILE_UPLOADED,
        EVENT_REQUEST_COMPLETED,
    ]


@pytest.mark.asyncio
async def test_revoke_is_persisted_when_its_audit_write_fails(caplog) -> None:
    caplog.set_level(logging.ERROR, logger="uploadgate.services.audit")
    org_id, created = await create_test_request()
    await _break_audit_table()

    async with SessionLocal() as session:
        result = await lifecycle.revoke(
            session, org_id=org_id, request_id=created.request_id, actor_id="staff-1"
        )

    assert result.changed is True
    assert result.request.status == REQUEST_REVOKED
    assert (await fetch_request(created.request_id)).status == REQUEST_REVOKED
    assert _failed_audit_types(caplog) == [EVENT_REQUEST_REVOKED]
