from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"
_VERSION_PREFIX = f"/{API_VERSION}"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION

    @classmethod
    def for_request(cls, request: Request) -> "ResponseMeta":
        return cls(request_id=get_request_id(request))


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # Handlers reached outside the middleware fall back to the header or a fresh id.
    request_id = (
        getattr(request.state, "request_id", None)
        or request.headers.get("X-Request-Id")
        or str(uuid4())
    )
    request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    path = request.url.path
    return path == _VERSION_PREFIX or path.startswith(f"{_VERSION_PREFIX}/")


def success_response(*, request: Request, data: Any) -> Any:
    # Unversioned paths return bare payloads.
    if not is_versioned_request(request):
        return data
    return {"data": data, "meta": ResponseMeta.for_request(request).model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details or None).model_dump(exclude_none=True)
    if not is_versioned_request(request):
        # Unversioned paths keep FastAPI's default {"detail": ...} shape.
        return {"detail": error}
    return {"error": error, "meta": ResponseMeta.for_request(request).model_dump()}
