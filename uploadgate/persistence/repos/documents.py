from __future__ import annotations

from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.domain.models import Document, UploadFile, VendorDocument, WorkOrderDocument


async def create_document_with_links(
    session: AsyncSession,
    *,
    upload_file: UploadFile,
    size_bytes: int,
    sha256: str | None,
) -> Document:
    # Document and both link rows are added together; the caller owns the transaction.
    document = Document(
        id=uuid4().hex,
        org_id=upload_file.org_id,
        file_name=upload_file.file_name,
        mime_type=upload_file.mime_type,
        size_bytes=size_bytes,
        sha256=sha256,
        storage_bucket=upload_file.storage_bucket,
        storage_path=upload_file.storage_path,
        source_upload_file_id=upload_file.id,
    )
    session.add(document)
    # Flush the document before links to satisfy FK constraints.
    await session.flush()
    session.add(
        WorkOrderDocument(
            id=uuid4().hex,
            org_id=upload_file.org_id,
            work_order_id=upload_file.work_order_id,
            document_id=document.id,
            doc_type=upload_file.doc_type,
        )
    )
    session.add(
        VendorDocument(
            id=uuid4().hex,
            org_id=upload_file.org_id,
            vendor_id=upload_file.vendor_id,
            document_id=document.id,
            doc_type=upload_file.doc_type,
        )
    )
    await session.flush()
    return document

