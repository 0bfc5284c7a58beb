from __future__ import annotations

from typing import Any


CATEGORY_ACCESS = "access"
CATEGORY_VALIDATION = "validation"
CATEGORY_INFRASTRUCTURE = "infrastructure"
CATEGORY_BUSINESS = "business"

_GENERIC_ACCESS_MESSAGE = "Invalid or expired upload link."
_GENERIC_RETRY_MESSAGE = "The upload could not be processed. Please try again."


class UploadGatewayError(Exception):
    """Base error for the upload gateway.

    Subclasses carry a stable ``code`` for clients, an HTTP ``status_code`` and a
    ``category`` that decides how much detail reaches the caller.
    """

    code = "UPLOAD_GATEWAY_ERROR"
    status_code = 500
    category = CATEGORY_INFRASTRUCTURE
    default_message = _GENERIC_RETRY_MESSAGE

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        # Access and infrastructure failures never echo internal detail.
        if self.category == CATEGORY_ACCESS:
            return _GENERIC_ACCESS_MESSAGE
        if self.category == CATEGORY_INFRASTRUCTURE:
            return _GENERIC_RETRY_MESSAGE
        return self.message

    @property
    def public_details(self) -> dict[str, Any] | None:
        if self.category in {CATEGORY_ACCESS, CATEGORY_INFRASTRUCTURE}:
            return None
        return self.details or None

    @property
    def retryable(self) -> bool:
        return self.category == CATEGORY_INFRASTRUCTURE


class AccessDeniedError(UploadGatewayError):
    """Token presented for a request cannot be used."""

    status_code = 403
    category = CATEGORY_ACCESS
    default_message = _GENERIC_ACCESS_MESSAGE


class InvalidTokenError(AccessDeniedError):
    """Unknown request id or wrong secret; the two are indistinguishable."""

    code = "UPLOAD_TOKEN_INVALID"


class ExpiredError(AccessDeniedError):
    code = "UPLOAD_REQUEST_EXPIRED"


class RevokedError(AccessDeniedError):
    code = "UPLOAD_REQUEST_REVOKED"


class RequestClosedError(AccessDeniedError):
    """Request already completed; no further vendor actions are accepted."""

    code = "UPLOAD_REQUEST_CLOSED"


class UploadValidationError(UploadGatewayError):
    status_code = 400
    category = CATEGORY_VALIDATION
    default_message = "The file does not meet the upload requirements."


class DocTypeNotAllowedError(UploadValidationError):
    code = "DOC_TYPE_NOT_ALLOWED"


class MimeNotAllowedError(UploadValidationError):
    code = "MIME_NOT_ALLOWED"
    status_code = 415


class FileTooLargeError(UploadValidationError):
    code = "FILE_TOO_LARGE"
    status_code = 413


class InvalidFileSizeError(UploadValidationError):
    code = "FILE_SIZE_INVALID"


class TooManyFilesError(UploadValidationError):
    code = "TOO_MANY_FILES"
    status_code = 409


class TotalSizeExceededError(UploadValidationError):
    code = "TOTAL_SIZE_EXCEEDED"
    status_code = 413


class InvalidChecksumError(UploadValidationError):
    code = "CHECKSUM_INVALID"


class InvalidUploadRequestError(UploadValidationError):
    """Staff supplied request parameters outside the accepted bounds."""

    code = "UPLOAD_REQUEST_INVALID"
    status_code = 422


class StorageError(UploadGatewayError):
    """Object store call failed."""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503


class StorageConfigError(StorageError):
    code = "STORAGE_MISCONFIGURED"


class UploadPreparationFailedError(UploadGatewayError):
    code = "UPLOAD_PREPARATION_FAILED"
    status_code = 503


class UploadFileNotFoundError(UploadGatewayError):
    code = "UPLOAD_FILE_NOT_FOUND"
    status_code = 404


class FinalizeConflictError(UploadFileNotFoundError):
    """File was already finalized with different content metadata."""

    code = "UPLOAD_FILE_CONFLICT"
    status_code = 409


class NoFilesUploadedError(UploadGatewayError):
    code = "NO_FILES_UPLOADED"
    status_code = 409
    category = CATEGORY_BUSINESS
    default_message = "Cannot mark as complete: no files have been uploaded."


class UploadRequestNotFoundError(UploadGatewayError):
    code = "UPLOAD_REQUEST_NOT_FOUND"
    status_code = 404
    category = CATEGORY_BUSINESS
    default_message = "Upload request not found."
