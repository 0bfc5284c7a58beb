from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.core.config import get_settings
from uploadgate.core.errors import TooManyFilesError, UploadPreparationFailedError
from uploadgate.domain.events import (
    ENTITY_UPLOAD_FILE,
    EVENT_FILE_FAILED,
    EVENT_FILE_URL_ISSUED,
)
from uploadgate.domain.state import FILE_QUEUED
from uploadgate.persistence.repos import upload_files as upload_files_repo
from uploadgate.persistence.repos import upload_requests as upload_requests_repo
from uploadgate.providers.storage.base import ObjectStore
from uploadgate.services.audit import record_event
from uploadgate.services.locks import request_lock
from uploadgate.services.quota import ProposedFile, QuotaPolicy, enforce_quota
from uploadgate.services.upload_requests import validate


logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")
_MAX_SANITIZED_NAME = 200


@dataclass(frozen=True)
class FileMeta:
    file_name: str
    mime_type: str
    size_bytes: int
    doc_type: str


@dataclass(frozen=True)
class SignedUpload:
    upload_file_id: str
    # Bearer capability for one object key; keep it out of reprs and logs.
    signed_url: str = field(repr=False)
    storage_path: str
    expires_at: datetime
    method: str = "PUT"
    headers: dict[str, str] | None = None


def sanitize_file_name(file_name: str) -> str:
    # Vendor-supplied names never reach the object key unescaped.
    cleaned = _UNSAFE_NAME_CHARS.sub("_", file_name or "")
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)[:_MAX_SANITIZED_NAME]
    return cleaned or "file"


def build_storage_path(
    *,
    org_id: str,
    work_order_id: str,
    vendor_id: str,
    upload_request_id: str,
    upload_file_id: str,
    file_name: str,
) -> str:
    return (
        f"org/{org_id}/work_orders/{work_order_id}/vendors/{vendor_id}"
        f"/upload_requests/{upload_request_id}/{upload_file_id}-{sanitize_file_name(file_name)}"
    )


async def create_signed_upload_url(
    session: AsyncSession,
    request_id: str,
    raw_secret: str,
    file_meta: FileMeta,
    *,
    object_store: ObjectStore,
    policy: QuotaPolicy | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    correlation_id: str | None = None,
) -> SignedUpload:
    """Reserve quota for one file and return a write-only URL for its object key.

    The file row is committed as ``queued`` before the object store is asked for
    a URL, so the reservation counts against the quota even while the call to
    storage is in flight. A storage failure releases it by marking the row
    ``failed``.
    """
    settings = get_settings()
    proposed = ProposedFile(
        doc_type=(file_meta.doc_type or "").strip(),
        mime_type=(file_meta.mime_type or "").strip().lower(),
        size_bytes=int(file_meta.size_bytes),
    )
    resolved_policy = policy or QuotaPolicy.from_settings()

    async with request_lock(request_id):
        try:
            request = await validate(session, request_id, raw_secret, for_update=True)
            await enforce_quota(session, request, proposed, policy=resolved_policy)
        except Exception:
            # Release the row lock before surfacing the rejection.
            await session.rollback()
            raise

        upload_file_id = uuid4().hex
        org_id = request.org_id
        storage_path = build_storage_path(
            org_id=org_id,
            work_order_id=request.work_order_id,
            vendor_id=request.vendor_id,
            upload_request_id=request.id,
            upload_file_id=upload_file_id,
            file_name=file_meta.file_name,
        )
        inserted = await upload_files_repo.insert_within_quota(
            session,
            values={
                "id": upload_file_id,
                "upload_request_id": request.id,
                "org_id": org_id,
                "work_order_id": request.work_order_id,
                "vendor_id": request.vendor_id,
                "doc_type": proposed.doc_type,
                "file_name": (file_meta.file_name or "").strip() or "file",
                "mime_type": proposed.mime_type,
                "size_bytes": proposed.size_bytes,
                "storage_bucket": settings.upload_bucket,
                "storage_path": storage_path,
                "status": FILE_QUEUED,
                "uploader_ip": ip_address,
            },
            max_files=request.max_files,
            max_total_bytes=request.max_total_bytes,
        )
        if not inserted:
            max_files = request.max_files
            await session.rollback()
            logger.info("upload_quota_insert_rejected request_id=%s", request_id)
            try:
                # Re-read usage to report the limit that was actually hit.
                refreshed = await upload_requests_repo.get_request(session, request_id)
                if refreshed is not None:
                    await enforce_quota(session, refreshed, proposed, policy=resolved_policy)
            finally:
                await session.rollback()
            raise TooManyFilesError(
                f"Maximum number of files ({max_files}) reached.",
                max_files=max_files,
            )
        await session.commit()

    try:
        target = await object_store.create_signed_upload_url(
            bucket=settings.upload_bucket,
            path=storage_path,
            content_type=proposed.mime_type,
            expires_in_s=settings.upload_signed_url_ttl_s,
        )
    except Exception as exc:  # noqa: BLE001 - any storage failure releases the reservation
        reason = f"signed_url_failed: {exc.__class__.__name__}"
        await upload_files_repo.mark_failed(session, upload_file_id, reason=reason)
        await session.commit()
        logger.error(
            "upload_url_failed request_id=%s upload_file_id=%s error=%s",
            request_id,
            upload_file_id,
            exc.__class__.__name__,
            exc_info=exc,
        )
        await record_event(
            session,
            org_id=org_id,
            event_type=EVENT_FILE_FAILED,
            entity_type=ENTITY_UPLOAD_FILE,
            entity_id=upload_file_id,
            actor_type="vendor",
            actor_id=None,
            metadata={"upload_request_id": request_id, "reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=correlation_id,
        )
        raise UploadPreparationFailedError(
            upload_request_id=request_id, upload_file_id=upload_file_id
        ) from exc

    logger.info(
        "upload_url_issued request_id=%s upload_file_id=%s size_bytes=%s",
        request_id,
        upload_file_id,
        proposed.size_bytes,
    )
    await record_event(
        session,
        org_id=org_id,
        event_type=EVENT_FILE_URL_ISSUED,
        entity_type=ENTITY_UPLOAD_FILE,
        entity_id=upload_file_id,
        actor_type="vendor",
        actor_id=None,
        metadata={
            "upload_request_id": request_id,
            "doc_type": proposed.doc_type,
            "file_name": file_meta.file_name,
            "mime_type": proposed.mime_type,
            "size_bytes": proposed.size_bytes,
            "storage_path": storage_path,
        },
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=correlation_id,
    )
    return SignedUpload(
        upload_file_id=upload_file_id,
        signed_url=target.url,
        storage_path=storage_path,
        expires_at=target.expires_at,
        method=target.method,
        headers=target.headers,
    )
