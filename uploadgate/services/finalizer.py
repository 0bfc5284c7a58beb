from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.core.config import get_settings
from uploadgate.core.errors import (
    FileTooLargeError,
    FinalizeConflictError,
    InvalidChecksumError,
    InvalidFileSizeError,
    TotalSizeExceededError,
    UploadFileNotFoundError,
)
from uploadgate.domain.events import ENTITY_UPLOAD_FILE, EVENT_FILE_UPLOADED
from uploadgate.domain.models import UploadFile
from uploadgate.domain.state import (
    FILE_FAILED,
    FILE_STORED,
    REQUEST_PARTIALLY_UPLOADED,
    utc_now,
)
from uploadgate.persistence.repos import documents as documents_repo
from uploadgate.persistence.repos import upload_files as upload_files_repo
from uploadgate.persistence.repos import upload_requests as upload_requests_repo
from uploadgate.services.audit import record_event
from uploadgate.services.locks import request_lock
from uploadgate.services.upload_requests import validate


logger = logging.getLogger(__name__)

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class FinalizeResult:
    upload_file_id: str
    document_id: str
    status: str
    already_finalized: bool


def normalize_sha256(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not _SHA256_HEX.match(normalized):
        raise InvalidChecksumError("sha256 must be 64 hexadecimal characters.")
    return normalized


def _resolve_stored(upload_file: UploadFile, sha256: str | None) -> FinalizeResult:
    # Repeat finalize is a no-op unless it claims different content.
    if sha256 is not None and upload_file.sha256 is not None and upload_file.sha256 != sha256:
        raise FinalizeConflictError(
            "File was already finalized with a different checksum.",
            upload_file_id=upload_file.id,
        )
    return FinalizeResult(
        upload_file_id=upload_file.id,
        document_id=upload_file.document_id,
        status=FILE_STORED,
        already_finalized=True,
    )


async def _load_stored_outcome(
    session: AsyncSession, request_id: str, upload_file_id: str, sha256: str | None
) -> FinalizeResult:
    upload_file = await upload_files_repo.get_file_for_request(
        session, upload_request_id=request_id, upload_file_id=upload_file_id
    )
    await session.commit()
    if upload_file is None or upload_file.status != FILE_STORED or not upload_file.document_id:
        raise UploadFileNotFoundError(upload_file_id=upload_file_id)
    return _resolve_stored(upload_file, sha256)


def _check_final_size(
    size_bytes: int, *, declared_bytes: int, used_bytes: int, max_total_bytes: int
) -> None:
    settings = get_settings()
    if size_bytes <= 0:
        raise InvalidFileSizeError("File is empty.", size_bytes=size_bytes)
    if size_bytes > settings.upload_max_file_bytes:
        raise FileTooLargeError(
            "File exceeds maximum size.",
            size_bytes=size_bytes,
            max_file_bytes=settings.upload_max_file_bytes,
        )
    # usage already includes the declared size reserved for this file.
    if used_bytes - declared_bytes + size_bytes > max_total_bytes:
        raise TotalSizeExceededError(
            "Total upload size limit exceeded.",
            max_total_bytes=max_total_bytes,
            size_bytes=size_bytes,
        )


async def finalize_upload(
    session: AsyncSession,
    request_id: str,
    raw_secret: str,
    upload_file_id: str,
    *,
    sha256: str | None = None,
    size_bytes: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    correlation_id: str | None = None,
) -> FinalizeResult:
    """Promote an uploaded object to a Document linked to its work order and vendor.

    Idempotent on ``upload_file_id``: a second call returns the document created
    by the first.
    """
    normalized_sha = normalize_sha256(sha256)

    async with request_lock(request_id):
        try:
            request = await validate(session, request_id, raw_secret, for_update=True)
            upload_file = await upload_files_repo.get_file_for_request(
                session,
                upload_request_id=request.id,
                upload_file_id=upload_file_id,
                for_update=True,
            )
            if upload_file is None or upload_file.status == FILE_FAILED:
                raise UploadFileNotFoundError(upload_file_id=upload_file_id)
            if upload_file.status == FILE_STORED:
                result = _resolve_stored(upload_file, normalized_sha)
                await session.commit()
                return result

            final_size = upload_file.size_bytes
            if size_bytes is not None and int(size_bytes) != upload_file.size_bytes:
                usage = await upload_files_repo.get_quota_usage(session, request.id)
                _check_final_size(
                    int(size_bytes),
                    declared_bytes=upload_file.size_bytes,
                    used_bytes=usage.total_bytes,
                    max_total_bytes=request.max_total_bytes,
                )
                final_size = int(size_bytes)
        except Exception:
            await session.rollback()
            raise

        org_id = request.org_id
        file_name = upload_file.file_name
        doc_type = upload_file.doc_type
        try:
            document = await documents_repo.create_document_with_links(
                session,
                upload_file=upload_file,
                size_bytes=final_size,
                sha256=normalized_sha,
            )
            document_id = document.id
            stored = await upload_files_repo.mark_stored(
                session,
                upload_file.id,
                document_id=document_id,
                size_bytes=final_size,
                sha256=normalized_sha,
                uploaded_at=utc_now(),
            )
            if not stored:
                # Another finalize won between our read and the update.
                await session.rollback()
                return await _load_stored_outcome(session, request_id, upload_file_id, normalized_sha)
            await upload_requests_repo.transition_status(
                session, request.id, target=REQUEST_PARTIALLY_UPLOADED
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info(
                "upload_finalize_duplicate request_id=%s upload_file_id=%s",
                request_id,
                upload_file_id,
            )
            return await _load_stored_outcome(session, request_id, upload_file_id, normalized_sha)

    logger.info(
        "upload_finalized request_id=%s upload_file_id=%s document_id=%s size_bytes=%s",
        request_id,
        upload_file_id,
        document_id,
        final_size,
    )
    await record_event(
        session,
        org_id=org_id,
        event_type=EVENT_FILE_UPLOADED,
        entity_type=ENTITY_UPLOAD_FILE,
        entity_id=upload_file_id,
        actor_type="vendor",
        actor_id=None,
        metadata={
            "upload_request_id": request_id,
            "document_id": document_id,
            "file_name": file_name,
            "doc_type": doc_type,
            "size_bytes": final_size,
            "sha256": normalized_sha,
        },
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=correlation_id,
    )
    return FinalizeResult(
        upload_file_id=upload_file_id,
        document_id=document_id,
        status=FILE_STORED,
        already_finalized=False,
    )
