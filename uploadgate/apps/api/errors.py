from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from uploadgate.apps.api.response import error_response, get_request_id, is_versioned_request
from uploadgate.core.errors import CATEGORY_INFRASTRUCTURE, UploadGatewayError
from uploadgate.persistence.guards import OrgPredicateError


logger = logging.getLogger(__name__)

# Seconds clients should wait before retrying an infrastructure failure.
RETRY_AFTER_S = 5


def _status_code_name(status_code: int) -> str:
    # 404 -> NOT_FOUND, 405 -> METHOD_NOT_ALLOWED, unknown codes -> HTTP_<n>.
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return f"HTTP_{status_code}"


def _json(request: Request, status_code: int, *, code: str, message: str, details: Any = None, headers=None):
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def upload_gateway_exception_handler(request: Request, exc: UploadGatewayError) -> JSONResponse:
    """Render domain errors with the public message for their category."""
    headers: dict[str, str] = {}
    if exc.category == CATEGORY_INFRASTRUCTURE:
        # Full detail stays server side; the client only gets a retry hint.
        logger.error(
            "upload_gateway_error request_id=%s code=%s message=%s details=%s",
            get_request_id(request),
            exc.code,
            exc.message,
            exc.details,
            exc_info=exc.__cause__ or exc,
        )
        headers["Retry-After"] = str(RETRY_AFTER_S)
    else:
        logger.info(
            "upload_request_rejected request_id=%s code=%s path=%s",
            get_request_id(request),
            exc.code,
            request.url.path,
        )
    details = jsonable_encoder(exc.public_details) if exc.public_details else None
    return _json(
        request,
        exc.status_code,
        code=exc.code,
        message=exc.public_message,
        details=details,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Covers FastAPI's HTTPException (auth dependencies) and Starlette routing errors."""
    detail = exc.detail
    if isinstance(detail, dict):
        code = str(detail.get("code") or _status_code_name(exc.status_code))
        message = str(detail.get("message") or "Request failed")
        extra = {key: value for key, value in detail.items() if key not in {"code", "message"}}
    else:
        code = _status_code_name(exc.status_code)
        message = str(detail) if detail else "Request failed"
        extra = None
    return _json(request, exc.status_code, code=code, message=message, details=extra, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": errors}, status_code=422)
    return _json(
        request,
        422,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
    )


async def org_predicate_exception_handler(request: Request, exc: OrgPredicateError) -> JSONResponse:
    logger.error("org_predicate_missing request_id=%s path=%s", get_request_id(request), request.url.path)
    return _json(request, 500, code="ORG_PREDICATE_REQUIRED", message="Organization scope is required")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Stack traces go to the log only.
    logger.exception(
        "unhandled_error request_id=%s path=%s", get_request_id(request), request.url.path, exc_info=exc
    )
    return _json(request, 500, code="INTERNAL_ERROR", message="Internal server error")
