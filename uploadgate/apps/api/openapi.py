from __future__ import annotations

from typing import Any

from uploadgate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


_RETRY_MESSAGE = "The upload could not be processed. Please try again."

DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response(
        "Bad request",
        _error_example(
            code="DOC_TYPE_NOT_ALLOWED",
            message='Document type "contract" is not allowed.',
            details={"doc_type": "contract", "allowed_doc_types": ["invoice"]},
        ),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="UPLOAD_TOKEN_INVALID", message="Invalid or expired upload link."),
    ),
    404: _response(
        "Not found",
        _error_example(code="UPLOAD_REQUEST_NOT_FOUND", message="Upload request not found."),
    ),
    409: _response(
        "Conflict",
        _error_example(
            code="TOO_MANY_FILES",
            message="Maximum number of files (2) reached.",
            details={"max_files": 2, "file_count": 2},
        ),
    ),
    413: _response(
        "Payload too large",
        _error_example(
            code="TOTAL_SIZE_EXCEEDED",
            message="Total upload size limit exceeded.",
            details={"max_total_bytes": 1000000, "used_bytes": 900000, "size_bytes": 200000},
        ),
    ),
    415: _response(
        "Unsupported media type",
        _error_example(code="MIME_NOT_ALLOWED", message='File type "text/html" is not allowed.'),
    ),
    422: _response(
        "Validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
    503: _response(
        "Service unavailable",
        _error_example(code="UPLOAD_PREPARATION_FAILED", message=_RETRY_MESSAGE),
    ),
}
