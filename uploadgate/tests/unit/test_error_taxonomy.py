from __future__ import annotations

from uploadgate.core.errors import (
    ExpiredError,
    FinalizeConflictError,
    InvalidTokenError,
    NoFilesUploadedError,
    RevokedError,
    StorageError,
    TotalSizeExceededError,
    UploadFileNotFoundError,
    UploadPreparationFailedError,
)


def test_access_errors_share_a_generic_message() -> None:
    messages = {
        InvalidTokenError().public_message,
        ExpiredError().public_message,
        RevokedError().public_message,
    }
    assert messages == {"Invalid or expired upload link."}
    assert InvalidTokenError().status_code == 403
    assert InvalidTokenError("internal detail", request_id="x").public_details is None


def test_validation_errors_expose_specific_details() -> None:
    exc = TotalSizeExceededError("Total upload size limit exceeded.", max_total_bytes=10)
    assert exc.status_code == 413
    assert exc.public_message == "Total upload size limit exceeded."
    assert exc.public_details == {"max_total_bytes": 10}
    assert exc.retryable is False


def test_infrastructure_errors_are_retryable_and_opaque() -> None:
    exc = UploadPreparationFailedError(upload_file_id="f1")
    assert exc.status_code == 503
    assert exc.retryable is True
    assert exc.public_details is None
    storage = StorageError("s3 says no", bucket="b")
    assert "s3" not in storage.public_message


def test_finalize_conflict_is_a_not_found_subtype() -> None:
    assert issubclass(FinalizeConflictError, UploadFileNotFoundError)
    assert FinalizeConflictError().status_code == 409


def test_business_error_message() -> None:
    exc = NoFilesUploadedError()
    assert exc.public_message == "Cannot mark as complete: no files have been uploaded."
    assert exc.status_code == 409
