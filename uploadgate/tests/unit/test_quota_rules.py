from __future__ import annotations

import pytest

from uploadgate.core.errors import (
    DocTypeNotAllowedError,
    FileTooLargeError,
    InvalidFileSizeError,
    MimeNotAllowedError,
    TooManyFilesError,
    TotalSizeExceededError,
)
from uploadgate.domain.models import UploadRequest
from uploadgate.persistence.repos.upload_files import QuotaUsage
from uploadgate.services.quota import ProposedFile, QuotaPolicy, check_file


POLICY = QuotaPolicy(
    allowed_mime_types=frozenset({"application/pdf", "image/png"}),
    max_file_bytes=500_000,
)


def _request(*, max_files: int = 2, max_total_bytes: int = 1_000_000) -> UploadRequest:
    # Transient row; check_file never touches the database.
    return UploadRequest(
        id="req-1",
        allowed_doc_types=["invoice"],
        max_files=max_files,
        max_total_bytes=max_total_bytes,
    )


def _usage(count: int = 0, total: int = 0) -> QuotaUsage:
    return QuotaUsage(file_count=count, total_bytes=total)


def test_accepts_file_within_all_limits() -> None:
    check_file(_request(), ProposedFile("invoice", "application/pdf", 400_000), _usage(1, 500_000), POLICY)


def test_doc_type_checked_before_everything_else() -> None:
    proposed = ProposedFile("contract", "text/html", 10_000_000)
    with pytest.raises(DocTypeNotAllowedError) as excinfo:
        check_file(_request(), proposed, _usage(5, 5_000_000), POLICY)
    assert excinfo.value.details["allowed_doc_types"] == ["invoice"]


def test_mime_checked_before_size() -> None:
    with pytest.raises(MimeNotAllowedError):
        check_file(_request(), ProposedFile("invoice", "text/html", 10_000_000), _usage(), POLICY)


@pytest.mark.parametrize("size", [0, -1])
def test_non_positive_size_rejected(size: int) -> None:
    with pytest.raises(InvalidFileSizeError):
        check_file(_request(), ProposedFile("invoice", "application/pdf", size), _usage(), POLICY)


def test_per_file_ceiling_is_inclusive() -> None:
    check_file(_request(), ProposedFile("invoice", "application/pdf", 500_000), _usage(), POLICY)
    with pytest.raises(FileTooLargeError):
        check_file(_request(), ProposedFile("invoice", "application/pdf", 500_001), _usage(), POLICY)


def test_file_count_limit() -> None:
    with pytest.raises(TooManyFilesError) as excinfo:
        check_file(_request(max_files=2), ProposedFile("invoice", "image/png", 10), _usage(2, 20), POLICY)
    assert excinfo.value.status_code == 409


def test_total_bytes_boundary() -> None:
    request = _request(max_total_bytes=1_000_000)
    # Exactly reaching the cap is allowed; one byte over is not.
    check_file(request, ProposedFile("invoice", "image/png", 200_000), _usage(1, 800_000), POLICY)
    with pytest.raises(TotalSizeExceededError):
        check_file(request, ProposedFile("invoice", "image/png", 200_001), _usage(1, 800_000), POLICY)


def test_policy_from_settings_lowercases_mime_list() -> None:
    policy = QuotaPolicy.from_settings()
    assert "application/pdf" in policy.allowed_mime_types
    assert all(item == item.lower() for item in policy.allowed_mime_types)
