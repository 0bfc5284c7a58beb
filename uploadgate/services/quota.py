from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.core.config import get_settings
from uploadgate.core.errors import (
    DocTypeNotAllowedError,
    FileTooLargeError,
    InvalidFileSizeError,
    MimeNotAllowedError,
    TooManyFilesError,
    TotalSizeExceededError,
)
from uploadgate.domain.models import UploadRequest
from uploadgate.persistence.repos import upload_files as upload_files_repo
from uploadgate.persistence.repos.upload_files import QuotaUsage


@dataclass(frozen=True)
class QuotaPolicy:
    # Process-wide limits; per-request limits live on the UploadRequest row.
    allowed_mime_types: frozenset[str]
    max_file_bytes: int

    @classmethod
    def from_settings(cls) -> "QuotaPolicy":
        settings = get_settings()
        return cls(
            allowed_mime_types=settings.allowed_mime_types(),
            max_file_bytes=settings.upload_max_file_bytes,
        )


@dataclass(frozen=True)
class ProposedFile:
    doc_type: str
    mime_type: str
    size_bytes: int


def _mib(value: int) -> str:
    return f"{value / (1024 * 1024):g} MB"


def check_file(
    request: UploadRequest,
    proposed: ProposedFile,
    usage: QuotaUsage,
    policy: QuotaPolicy,
) -> None:
    """Raise the first quota violation for ``proposed`` given current ``usage``.

    Checks run in a fixed order (doc type, mime, per-file size, count, bytes) so
    callers always see the same error for the same input.
    """
    if proposed.doc_type not in (request.allowed_doc_types or []):
        raise DocTypeNotAllowedError(
            f'Document type "{proposed.doc_type}" is not allowed.',
            doc_type=proposed.doc_type,
            allowed_doc_types=list(request.allowed_doc_types or []),
        )
    if proposed.mime_type.lower() not in policy.allowed_mime_types:
        raise MimeNotAllowedError(
            f'File type "{proposed.mime_type}" is not allowed.',
            mime_type=proposed.mime_type,
        )
    if proposed.size_bytes <= 0:
        raise InvalidFileSizeError("File is empty.", size_bytes=proposed.size_bytes)
    if proposed.size_bytes > policy.max_file_bytes:
        raise FileTooLargeError(
            f"File exceeds maximum size of {_mib(policy.max_file_bytes)}.",
            size_bytes=proposed.size_bytes,
            max_file_bytes=policy.max_file_bytes,
        )
    if usage.file_count >= request.max_files:
        raise TooManyFilesError(
            f"Maximum number of files ({request.max_files}) reached.",
            max_files=request.max_files,
            file_count=usage.file_count,
        )
    if usage.total_bytes + proposed.size_bytes > request.max_total_bytes:
        raise TotalSizeExceededError(
            "Total upload size limit exceeded.",
            max_total_bytes=request.max_total_bytes,
            used_bytes=usage.total_bytes,
            size_bytes=proposed.size_bytes,
        )


async def enforce_quota(
    session: AsyncSession,
    request: UploadRequest,
    proposed: ProposedFile,
    *,
    policy: QuotaPolicy | None = None,
) -> QuotaUsage:
    # Read usage fresh on every call; the returned snapshot is for reporting only.
    usage = await upload_files_repo.get_quota_usage(session, request.id)
    check_file(request, proposed, usage, policy or QuotaPolicy.from_settings())
    return usage
