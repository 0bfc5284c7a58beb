from __future__ import annotations

import pytest

from uploadgate.core.errors import RequestClosedError, TotalSizeExceededError
from uploadgate.persistence.db import SessionLocal
from uploadgate.providers.storage.fake import FakeObjectStore
from uploadgate.services import upload_requests as lifecycle
from uploadgate.services.finalizer import finalize_upload
from uploadgate.services.signed_uploads import FileMeta, create_signed_upload_url
from uploadgate.tests.utils.factories import create_test_request, fetch_events, fetch_files, fetch_request


def _invoice(size: int) -> FileMeta:
    return FileMeta(file_name="invoice.pdf", mime_type="application/pdf", size_bytes=size, doc_type="invoice")


@pytest.mark.asyncio
async def test_two_file_invoice_request_end_to_end() -> None:
    _org_id, created = await create_test_request(
        max_files=2, max_total_bytes=1_000_000, allowed_doc_types=["invoice"]
    )
    request_id, secret = created.request_id, created.raw_secret
    store = FakeObjectStore()

    async with SessionLocal() as session:
        first = await create_signed_upload_url(
            session, request_id, secret, _invoice(400_000), object_store=store
        )
    assert [item.status for item in await fetch_files(request_id)] == ["queued"]

    async with SessionLocal() as session:
        finalized = await finalize_upload(session, request_id, secret, first.upload_file_id)
    assert finalized.status == "stored"
    assert (await fetch_request(request_id)).status == "partially_uploaded"

    async with SessionLocal() as session:
        with pytest.raises(TotalSizeExceededError):
            await create_signed_upload_url(
                session, request_id, secret, _invoice(700_000), object_store=store
            )

    async with SessionLocal() as session:
        await create_signed_upload_url(session, request_id, secret, _invoice(500_000), object_store=store)

    async with SessionLocal() as session:
        completed = await lifecycle.mark_completed(session, request_id, secret)
    assert completed.status == "completed"

    async with SessionLocal() as session:
        with pytest.raises(RequestClosedError):
            await create_signed_upload_url(
                session, request_id, secret, _invoice(10), object_store=store
            )

    statuses = sorted(item.status for item in await fetch_files(request_id))
    assert statuses == ["queued", "stored"]
    event_types = [event.event_type for event in await fetch_events()]
    assert event_types == [
        "request.created",
        "file.url_issued",
        "file.uploaded",
        "file.url_issued",
        "request.completed",
    ]
