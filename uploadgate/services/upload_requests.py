"""Upload request lifecycle: creation, token validation and status transitions.

Every vendor-facing call enters through :func:`validate`, which re-reads the
request row, checks the presented secret against the stored peppered hash and
turns the first post-expiry observation into a persisted ``expired`` state.
Results handed back to callers are frozen views built before the audit write,
so a failed audit commit cannot expire ORM state under them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlencode
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.core.config import get_settings
from uploadgate.core.errors import (
    ExpiredError,
    InvalidTokenError,
    InvalidUploadRequestError,
    NoFilesUploadedError,
    RequestClosedError,
    RevokedError,
    UploadRequestNotFoundError,
)
from uploadgate.domain.events import (
    ENTITY_UPLOAD_REQUEST,
    EVENT_REQUEST_COMPLETED,
    EVENT_REQUEST_CREATED,
    EVENT_REQUEST_EXPIRED,
    EVENT_REQUEST_OPENED,
    EVENT_REQUEST_REVOKED,
)
from uploadgate.domain.models import UploadRequest
from uploadgate.domain.state import (
    REQUEST_COMPLETED,
    REQUEST_EXPIRED,
    REQUEST_PENDING,
    REQUEST_REVOKED,
    as_utc,
    is_past,
    utc_now,
)
from uploadgate.persistence.repos import audit as audit_repo
from uploadgate.persistence.repos import upload_files as upload_files_repo
from uploadgate.persistence.repos import upload_requests as upload_requests_repo
from uploadgate.services.audit import record_event
from uploadgate.services.locks import request_lock
from uploadgate.services.tokens import generate_token, hash_token, verify_token


logger = logging.getLogger(__name__)

# Compared against when the id does not exist so both failure paths do the same work.
_MISSING_TOKEN_HASH = "0" * 64


@dataclass(frozen=True)
class UploadRequestView:
    id: str
    org_id: str
    work_order_id: str
    vendor_id: str
    request_email: str
    allowed_doc_types: list[str]
    expires_at: datetime
    status: str
    max_files: int
    max_total_bytes: int
    message: str | None
    created_by: str | None
    created_at: datetime | None
    completed_at: datetime | None
    revoked_at: datetime | None
    revoked_by: str | None

    @classmethod
    def from_row(cls, row: UploadRequest) -> "UploadRequestView":
        return cls(
            id=row.id,
            org_id=row.org_id,
            work_order_id=row.work_order_id,
            vendor_id=row.vendor_id,
            request_email=row.request_email,
            allowed_doc_types=list(row.allowed_doc_types or []),
            expires_at=as_utc(row.expires_at),
            status=row.status,
            max_files=row.max_files,
            max_total_bytes=row.max_total_bytes,
            message=row.message,
            created_by=row.created_by,
            created_at=as_utc(row.created_at) if row.created_at else None,
            completed_at=as_utc(row.completed_at) if row.completed_at else None,
            revoked_at=as_utc(row.revoked_at) if row.revoked_at else None,
            revoked_by=row.revoked_by,
        )


@dataclass(frozen=True)
class CreatedUploadRequest:
    request_id: str
    # Excluded from repr so the secret never lands in logs or tracebacks.
    raw_secret: str = field(repr=False)
    expires_at: datetime
    portal_url: str = field(repr=False)


@dataclass(frozen=True)
class RevokeResult:
    request: UploadRequestView
    changed: bool


@dataclass(frozen=True)
class UploadRequestSummary:
    request: UploadRequestView
    stored_files: int


@dataclass(frozen=True)
class PortalFile:
    id: str
    file_name: str
    doc_type: str
    mime_type: str
    status: str
    size_bytes: int
    uploaded_at: datetime | None


@dataclass(frozen=True)
class PortalStatus:
    request_id: str
    status: str
    vendor_name: str | None
    work_order_title: str | None
    work_order_number: str | None
    allowed_doc_types: list[str]
    expires_at: datetime
    max_files: int
    max_total_bytes: int
    max_file_bytes: int
    allowed_mime_types: list[str]
    used_files: int
    used_bytes: int
    message: str | None
    uploaded_files: list[PortalFile]


def build_portal_url(request_id: str, raw_secret: str) -> str:
    settings = get_settings()
    path = settings.portal_path_template.format(request_id=request_id)
    return f"{settings.portal_base_url.rstrip('/')}{path}?{urlencode({'t': raw_secret})}"


def format_work_order_number(number: int | None) -> str | None:
    if number is None:
        return None
    return f"WO-{number:04d}"


def _normalize_doc_types(values: list[str] | None) -> list[str]:
    if values is None:
        values = get_settings().default_doc_types()
    normalized: list[str] = []
    for value in values:
        item = str(value).strip()
        if item and item not in normalized:
            normalized.append(item)
    if not normalized:
        raise InvalidUploadRequestError("At least one document type must be allowed.")
    return normalized


def _require_positive(name: str, value: int) -> int:
    if value < 1:
        raise InvalidUploadRequestError(f"{name} must be at least 1.", field=name, value=value)
    return value


async def create_request(
    session: AsyncSession,
    *,
    org_id: str,
    issuer_id: str,
    work_order_id: str,
    vendor_id: str,
    request_email: str,
    allowed_doc_types: list[str] | None = None,
    ttl_hours: int | None = None,
    max_files: int | None = None,
    max_total_bytes: int | None = None,
    message: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> CreatedUploadRequest:
    """Persist a new upload request and return its one-time secret.

    The raw secret is returned exactly once and must be delivered out of band;
    only its peppered hash is stored. ``request_id`` is the HTTP correlation id
    for the audit trail, not the upload request id.
    """
    settings = get_settings()
    if not work_order_id or not vendor_id:
        raise InvalidUploadRequestError("work_order_id and vendor_id are required.")
    email = (request_email or "").strip()
    if "@" not in email:
        raise InvalidUploadRequestError("request_email must be an email address.", field="request_email")
    doc_types = _normalize_doc_types(allowed_doc_types)
    resolved_ttl = _require_positive(
        "ttl_hours", ttl_hours if ttl_hours is not None else settings.upload_default_ttl_hours
    )
    if resolved_ttl > settings.upload_max_ttl_hours:
        raise InvalidUploadRequestError(
            f"ttl_hours must not exceed {settings.upload_max_ttl_hours}.",
            field="ttl_hours",
            value=resolved_ttl,
        )
    resolved_max_files = _require_positive(
        "max_files", max_files if max_files is not None else settings.upload_default_max_files
    )
    resolved_max_bytes = _require_positive(
        "max_total_bytes",
        max_total_bytes if max_total_bytes is not None else settings.upload_default_max_total_bytes,
    )

    raw_secret = generate_token()
    upload_request_id = uuid4().hex
    expires_at = utc_now() + timedelta(hours=resolved_ttl)
    await upload_requests_repo.create_request(
        session,
        id=upload_request_id,
        org_id=org_id,
        work_order_id=work_order_id,
        vendor_id=vendor_id,
        request_email=email,
        allowed_doc_types=doc_types,
        token_hash=hash_token(raw_secret),
        expires_at=expires_at,
        status=REQUEST_PENDING,
        max_files=resolved_max_files,
        max_total_bytes=resolved_max_bytes,
        message=message,
        created_by=issuer_id,
    )
    await session.commit()
    logger.info(
        "upload_request_created request_id=%s org_id=%s work_order_id=%s vendor_id=%s",
        upload_request_id,
        org_id,
        work_order_id,
        vendor_id,
    )

    created = CreatedUploadRequest(
        request_id=upload_request_id,
        raw_secret=raw_secret,
        expires_at=expires_at,
        portal_url=build_portal_url(upload_request_id, raw_secret),
    )
    await record_event(
        session,
        org_id=org_id,
        event_type=EVENT_REQUEST_CREATED,
        entity_type=ENTITY_UPLOAD_REQUEST,
        entity_id=upload_request_id,
        actor_type="staff",
        actor_id=issuer_id,
        metadata={
            "work_order_id": work_order_id,
            "vendor_id": vendor_id,
            "request_email": email,
            "allowed_doc_types": doc_types,
            "max_files": resolved_max_files,
            "max_total_bytes": resolved_max_bytes,
            "expires_at": expires_at.isoformat(),
        },
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=request_id,
    )
    return created


async def _expire(session: AsyncSession, request: UploadRequest, *, trigger: str) -> bool:
    # Conditional update: only the first observer flips the row and writes the audit event.
    upload_request_id = request.id
    org_id = request.org_id
    previous_status = request.status
    expires_at = as_utc(request.expires_at)
    changed = await upload_requests_repo.transition_status(
        session,
        upload_request_id,
        target=REQUEST_EXPIRED,
        values={"expired_at": utc_now()},
    )
    await session.commit()
    if not changed:
        return False
    logger.info("upload_request_expired request_id=%s trigger=%s", upload_request_id, trigger)
    await record_event(
        session,
        org_id=org_id,
        event_type=EVENT_REQUEST_EXPIRED,
        entity_type=ENTITY_UPLOAD_REQUEST,
        entity_id=upload_request_id,
        actor_type="system",
        actor_id=None,
        metadata={
            "previous_status": previous_status,
            "expires_at": expires_at.isoformat(),
            "trigger": trigger,
        },
    )
    return True


async def validate(
    session: AsyncSession,
    request_id: str,
    raw_secret: str,
    *,
    for_update: bool = False,
) -> UploadRequest:
    """Return the request row for an exact (id, secret) pair of an open request.

    Raises ``InvalidTokenError`` for unknown ids and wrong secrets alike,
    ``RevokedError``, ``RequestClosedError`` once completed, and ``ExpiredError``
    (persisting the expired state the first time it is observed).
    """
    request = None
    if request_id:
        request = await upload_requests_repo.get_request(session, request_id, for_update=for_update)
    stored_hash = request.token_hash if request is not None else _MISSING_TOKEN_HASH
    token_matches = verify_token(raw_secret or "", stored_hash)
    if request is None or not token_matches:
        raise InvalidTokenError()

    if request.status == REQUEST_REVOKED:
        raise RevokedError()
    if request.status == REQUEST_COMPLETED:
        raise RequestClosedError()
    if request.status == REQUEST_EXPIRED:
        raise ExpiredError()
    if is_past(request.expires_at):
        await _expire(session, request, trigger="validate")
        raise ExpiredError()
    return request


async def get_portal_status(
    session: AsyncSession,
    request_id: str,
    raw_secret: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    correlation_id: str | None = None,
) -> PortalStatus:
    """Sanitized view of a request for the vendor portal; never exposes the token hash."""
    request = await validate(session, request_id, raw_secret)
    settings = get_settings()
    vendor, work_order = await upload_requests_repo.get_portal_labels(
        session,
        org_id=request.org_id,
        work_order_id=request.work_order_id,
        vendor_id=request.vendor_id,
    )
    files = await upload_files_repo.list_files_for_request(session, request.id)
    usage = await upload_files_repo.get_quota_usage(session, request.id)
    status = PortalStatus(
        request_id=request.id,
        status=request.status,
        vendor_name=vendor.vendor_name if vendor else None,
        work_order_title=work_order.title if work_order else None,
        work_order_number=format_work_order_number(work_order.work_order_number) if work_order else None,
        allowed_doc_types=list(request.allowed_doc_types or []),
        expires_at=as_utc(request.expires_at),
        max_files=request.max_files,
        max_total_bytes=request.max_total_bytes,
        max_file_bytes=settings.upload_max_file_bytes,
        allowed_mime_types=sorted(settings.allowed_mime_types()),
        used_files=usage.file_count,
        used_bytes=usage.total_bytes,
        message=request.message,
        uploaded_files=[
            PortalFile(
                id=item.id,
                file_name=item.file_name,
                doc_type=item.doc_type,
                mime_type=item.mime_type,
                status=item.status,
                size_bytes=item.size_bytes,
                uploaded_at=as_utc(item.uploaded_at) if item.uploaded_at else None,
            )
            for item in files
        ],
    )
    # Close the read transaction before the audit commit.
    await session.commit()
    await record_event(
        session,
        org_id=request.org_id,
        event_type=EVENT_REQUEST_OPENED,
        entity_type=ENTITY_UPLOAD_REQUEST,
        entity_id=status.request_id,
        actor_type="vendor",
        actor_id=None,
        metadata={"status": status.status},
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=correlation_id,
    )
    return status


async def mark_completed(
    session: AsyncSession,
    request_id: str,
    raw_secret: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    correlation_id: str | None = None,
) -> UploadRequestView:
    async with request_lock(request_id):
        try:
            request = await validate(session, request_id, raw_secret, for_update=True)
            stored_files = await upload_files_repo.count_stored(session, request.id)
            if stored_files == 0:
                raise NoFilesUploadedError()
        except Exception:
            await session.rollback()
            raise
        changed = await upload_requests_repo.transition_status(
            session,
            request.id,
            target=REQUEST_COMPLETED,
            values={"completed_at": utc_now()},
        )
        await session.commit()
        if not changed:
            # Lost a race with expiry or revocation; report the state that won.
            await validate(session, request_id, raw_secret)
            raise RequestClosedError()
        refreshed = await upload_requests_repo.get_request(session, request.id)
        view = UploadRequestView.from_row(refreshed)
        await session.commit()

    logger.info("upload_request_completed request_id=%s stored_files=%s", view.id, stored_files)
    await record_event(
        session,
        org_id=view.org_id,
        event_type=EVENT_REQUEST_COMPLETED,
        entity_type=ENTITY_UPLOAD_REQUEST,
        entity_id=view.id,
        actor_type="vendor",
        actor_id=None,
        metadata={"stored_files": stored_files},
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=correlation_id,
    )
    return view


async def revoke(
    session: AsyncSession,
    *,
    org_id: str,
    request_id: str,
    actor_id: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    correlation_id: str | None = None,
) -> RevokeResult:
    """Revoke a request; repeated calls and already-terminal requests succeed unchanged.

    Authorization of ``actor_id`` is enforced by the caller.
    """
    request = await upload_requests_repo.get_request_for_org(
        session, org_id=org_id, request_id=request_id
    )
    if request is None:
        raise UploadRequestNotFoundError()
    previous_status = request.status
    changed = await upload_requests_repo.transition_status(
        session,
        request.id,
        target=REQUEST_REVOKED,
        values={"revoked_at": utc_now(), "revoked_by": actor_id},
    )
    await session.commit()
    refreshed = await upload_requests_repo.get_request_for_org(
        session, org_id=org_id, request_id=request_id
    )
    view = UploadRequestView.from_row(refreshed)
    await session.commit()
    if not changed:
        logger.info(
            "upload_request_revoke_noop request_id=%s status=%s", view.id, view.status
        )
        return RevokeResult(request=view, changed=False)

    logger.info("upload_request_revoked request_id=%s actor_id=%s", view.id, actor_id)
    await record_event(
        session,
        org_id=org_id,
        event_type=EVENT_REQUEST_REVOKED,
        entity_type=ENTITY_UPLOAD_REQUEST,
        entity_id=view.id,
        actor_type="staff",
        actor_id=actor_id,
        metadata={"previous_status": previous_status},
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=correlation_id,
    )
    return RevokeResult(request=view, changed=True)


async def get_request_for_org(
    session: AsyncSession, *, org_id: str, request_id: str
) -> UploadRequestView:
    request = await upload_requests_repo.get_request_for_org(
        session, org_id=org_id, request_id=request_id
    )
    if request is None:
        raise UploadRequestNotFoundError()
    return UploadRequestView.from_row(request)


async def list_requests_for_work_order(
    session: AsyncSession, *, org_id: str, work_order_id: str
) -> list[UploadRequestSummary]:
    rows = await upload_requests_repo.list_for_work_order(
        session, org_id=org_id, work_order_id=work_order_id
    )
    return [
        UploadRequestSummary(request=UploadRequestView.from_row(row.request), stored_files=row.stored_files)
        for row in rows
    ]


async def expire_overdue_requests(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> int:
    """Flip open requests past their expiry to expired; returns how many changed."""
    resolved_now = now or utc_now()
    resolved_limit = limit or get_settings().upload_expiry_sweep_batch_size
    overdue = await upload_requests_repo.list_overdue_open(
        session, now=resolved_now, limit=resolved_limit
    )
    expired = 0
    for request in overdue:
        if await _expire(session, request, trigger="sweep"):
            expired += 1
    return expired


@dataclass(frozen=True)
class AuditEventView:
    id: int
    event_type: str
    entity_type: str
    entity_id: str
    actor_type: str
    actor_id: str | None
    metadata: dict
    schema_version: int
    request_id: str | None
    created_at: datetime | None


async def list_audit_events(
    session: AsyncSession,
    *,
    org_id: str,
    request_id: str,
    offset: int = 0,
    limit: int = 100,
) -> list[AuditEventView]:
    """Audit trail of one request and every file submitted under it, oldest first."""
    request = await upload_requests_repo.get_request_for_org(
        session, org_id=org_id, request_id=request_id
    )
    if request is None:
        raise UploadRequestNotFoundError()
    files = await upload_files_repo.list_files_for_request(session, request.id)
    events = await audit_repo.list_events(
        session,
        org_id=org_id,
        entity_ids=[request.id, *(item.id for item in files)],
        offset=offset,
        limit=limit,
    )
    return [
        AuditEventView(
            id=event.id,
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_type=event.actor_type,
            actor_id=event.actor_id,
            metadata=dict(event.metadata_json or {}),
            schema_version=event.schema_version,
            request_id=event.request_id,
            created_at=as_utc(event.created_at) if event.created_at else None,
        )
        for event in events
    ]
