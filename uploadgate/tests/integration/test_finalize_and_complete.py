from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from uploadgate.core.errors import (
    FinalizeConflictError,
    InvalidChecksumError,
    RequestClosedError,
    TotalSizeExceededError,
    UploadFileNotFoundError,
    UploadPreparationFailedError,
)
from uploadgate.domain.models import Document, VendorDocument, WorkOrderDocument
from uploadgate.persistence.db import SessionLocal
from uploadgate.persistence.repos import upload_files as upload_files_repo
from uploadgate.providers.storage.fake import FakeObjectStore
from uploadgate.services import upload_requests as lifecycle
from uploadgate.services.finalizer import finalize_upload
from uploadgate.services.signed_uploads import FileMeta, create_signed_upload_url
from uploadgate.tests.utils.factories import (
    create_test_request,
    fetch_events,
    fetch_files,
    fetch_request,
)


SHA_A = "a" * 64
SHA_B = "b" * 64


async def _reserve(request_id: str, secret: str, size: int = 100, *, store: FakeObjectStore | None = None) -> str:
    async with SessionLocal() as session:
        signed = await create_signed_upload_url(
            session,
            request_id,
            secret,
            FileMeta(file_name="invoice.pdf", mime_type="application/pdf", size_bytes=size, doc_type="invoice"),
            object_store=store or FakeObjectStore(),
        )
    return signed.upload_file_id


async def _finalize(request_id: str, secret: str, upload_file_id: str, **kwargs):
    async with SessionLocal() as session:
        return await finalize_upload(session, request_id, secret, upload_file_id, **kwargs)


async def _count(model) -> int:
    async with SessionLocal() as session:
        return int((await session.execute(select(func.count()).select_from(model))).scalar() or 0)


@pytest.mark.asyncio
async def test_finalize_creates_linked_document_and_advances_request() -> None:
    _org_id, created = await create_test_request(
        work_order_id="wo-5", vendor_id="vendor-5", allowed_doc_types=["invoice"]
    )
    file_id = await _reserve(created.request_id, created.raw_secret, 400)

    result = await _finalize(created.request_id, created.raw_secret, file_id, sha256=SHA_A.upper())

    assert result.already_finalized is False
    assert result.status == "stored"
    files = await fetch_files(created.request_id)
    assert files[0].status == "stored"
    assert files[0].document_id == result.document_id
    assert files[0].sha256 == SHA_A
    assert files[0].uploaded_at is not None
    assert (await fetch_request(created.request_id)).status == "partially_uploaded"

    async with SessionLocal() as session:
        document = await session.get(Document, result.document_id)
        wo_links = (await session.execute(select(WorkOrderDocument))).scalars().all()
        vendor_links = (await session.execute(select(VendorDocument))).scalars().all()
    assert document.storage_path == files[0].storage_path
    assert document.source_upload_file_id == file_id
    assert [(link.work_order_id, link.document_id, link.doc_type) for link in wo_links] == [
        ("wo-5", result.document_id, "invoice")
    ]
    assert [(link.vendor_id, link.document_id) for link in vendor_links] == [
        ("vendor-5", result.document_id)
    ]
    events = await fetch_events(entity_id=file_id, event_type="file.uploaded")
    assert len(events) == 1
    assert events[0].metadata_json["document_id"] == result.document_id


@pytest.mark.asyncio
async def test_finalize_twice_creates_one_document() -> None:
    _org_id, created = await create_test_request()
    file_id = await _reserve(created.request_id, created.raw_secret)

    first = await _finalize(created.request_id, created.raw_secret, file_id, sha256=SHA_A)
    second = await _finalize(created.request_id, created.raw_secret, file_id, sha256=SHA_A)
    third = await _finalize(created.request_id, created.raw_secret, file_id)

    assert second.already_finalized is True
    assert third.already_finalized is True
    assert first.document_id == second.document_id == third.document_id
    assert await _count(Document) == 1
    assert len(await fetch_events(entity_id=file_id, event_type="file.uploaded")) == 1


@pytest.mark.asyncio
async def test_concurrent_finalize_creates_one_document() -> None:
    _org_id, created = await create_test_request()
    file_id = await _reserve(created.request_id, created.raw_secret)

    results = await asyncio.gather(
        *[_finalize(created.request_id, created.raw_secret, file_id) for _ in range(4)]
    )

    assert len({item.document_id for item in results}) == 1
    assert sum(1 for item in results if not item.already_finalized) == 1
    assert await _count(Document) == 1
    assert await _count(WorkOrderDocument) == 1


@pytest.mark.asyncio
async def test_refinalize_with_different_checksum_conflicts() -> None:
    _org_id, created = await create_test_request()
    file_id = await _reserve(created.request_id, created.raw_secret)
    await _finalize(created.request_id, created.raw_secret, file_id, sha256=SHA_A)

    with pytest.raises(FinalizeConflictError) as excinfo:
        await _finalize(created.request_id, created.raw_secret, file_id, sha256=SHA_B)
    assert isinstance(excinfo.value, UploadFileNotFoundError)
    assert (await fetch_files(created.request_id))[0].sha256 == SHA_A


@pytest.mark.asyncio
async def test_finalize_rejects_unknown_foreign_and_failed_files() -> None:
    _org_id, created = await create_test_request()
    _other_org, other = await create_test_request()
    foreign_file = await _reserve(other.request_id, other.raw_secret)

    with pytest.raises(UploadFileNotFoundError):
        await _finalize(created.request_id, created.raw_secret, "missing")
    # A valid token for one request cannot reach another request's files.
    with pytest.raises(UploadFileNotFoundError):
        await _finalize(created.request_id, created.raw_secret, foreign_file)

    with pytest.raises(UploadPreparationFailedError):
        await _reserve(created.request_id, created.raw_secret, store=FakeObjectStore(fail=True))
    failed = [item for item in await fetch_files(created.request_id) if item.status == "failed"]
    with pytest.raises(UploadFileNotFoundError):
        await _finalize(created.request_id, created.raw_secret, failed[0].id)
    assert await _count(Document) == 0


@pytest.mark.asyncio
async def test_finalize_validates_checksum_and_actual_size() -> None:
    _org_id, created = await create_test_request(max_total_bytes=1000)
    first = await _reserve(created.request_id, created.raw_secret, 500)
    second = await _reserve(created.request_id, created.raw_secret, 400)

    with pytest.raises(InvalidChecksumError):
        await _finalize(created.request_id, created.raw_secret, first, sha256="xyz")
    # 400 reserved for the other file; 500 -> 700 would cross 1000.
    with pytest.raises(TotalSizeExceededError):
        await _finalize(created.request_id, created.raw_secret, first, size_bytes=700)

    result = await _finalize(created.request_id, created.raw_secret, second, size_bytes=450)
    assert result.status == "stored"
    sizes = {item.id: item.size_bytes for item in await fetch_files(created.request_id)}
    assert sizes == {first: 500, second: 450}


@pytest.mark.asyncio
async def test_complete_closes_the_request() -> None:
    _org_id, created = await create_test_request()
    file_id = await _reserve(created.request_id, created.raw_secret)
    await _finalize(created.request_id, created.raw_secret, file_id)

    async with SessionLocal() as session:
        view = await lifecycle.mark_completed(session, created.request_id, created.raw_secret)
    assert view.status == "completed"
    assert view.completed_at is not None
    events = await fetch_events(entity_id=created.request_id, event_type="request.completed")
    assert [event.metadata_json["stored_files"] for event in events] == [1]

    async with SessionLocal() as session:
        with pytest.raises(RequestClosedError):
            await lifecycle.mark_completed(session, created.request_id, created.raw_secret)
    async with SessionLocal() as session:
        with pytest.raises(RequestClosedError):
            await lifecycle.get_portal_status(session, created.request_id, created.raw_secret)


@pytest.mark.asyncio
async def test_stored_file_is_never_demoted_to_failed() -> None:
    _org_id, created = await create_test_request()
    upload_file_id = await _reserve(created.request_id, created.raw_secret)
    await _finalize(created.request_id, created.raw_secret, upload_file_id)

    async with SessionLocal() as session:
        demoted = await upload_files_repo.mark_failed(session, upload_file_id, reason="late storage error")
        await session.commit()

    assert demoted is False
    files = await fetch_files(created.request_id)
    assert files[0].status == "stored"
    assert files[0].failure_reason is None
