from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.apps.api.deps import get_db, get_object_store
from uploadgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from uploadgate.apps.api.response import SuccessEnvelope, success_response
from uploadgate.providers.storage.base import ObjectStore
from uploadgate.services import upload_requests as upload_requests_service
from uploadgate.services.audit import get_request_context
from uploadgate.services.finalizer import finalize_upload
from uploadgate.services.signed_uploads import FileMeta, create_signed_upload_url


# Public surface: the ?t= secret is the only credential, re-checked on every call.
router = APIRouter(prefix="/upload-requests", tags=["vendor-portal"], responses=DEFAULT_ERROR_RESPONSES)

# A missing secret falls through to the same invalid-token path as a wrong one.
TokenParam = Annotated[str, Query(alias="t", description="Upload link secret")]


class PortalFileResponse(BaseModel):
    id: str
    file_name: str
    doc_type: str
    mime_type: str
    status: str
    size_bytes: int
    uploaded_at: datetime | None


class PortalStatusResponse(BaseModel):
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
    uploaded_files: list[PortalFileResponse]


class FileUploadBody(BaseModel):
    file_name: str = Field(min_length=1, max_length=1024)
    mime_type: str = Field(min_length=1, max_length=255)
    size_bytes: int
    doc_type: str = Field(min_length=1, max_length=64)

    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "file_name": "invoice-0042.pdf",
                    "mime_type": "application/pdf",
                    "size_bytes": 184320,
                    "doc_type": "invoice",
                }
            ]
        },
    }


class SignedUploadResponse(BaseModel):
    upload_file_id: str
    signed_url: str
    method: str
    headers: dict[str, str] | None
    storage_path: str
    expires_at: datetime


class FinalizeBody(BaseModel):
    sha256: str | None = Field(default=None, max_length=128)
    size_bytes: int | None = None

    model_config = {"extra": "forbid"}


class FinalizeResponse(BaseModel):
    upload_file_id: str
    document_id: str
    status: str
    already_finalized: bool


class CompleteResponse(BaseModel):
    request_id: str
    status: str
    completed_at: datetime | None


@router.get(
    "/{request_id}/status",
    response_model=SuccessEnvelope[PortalStatusResponse] | PortalStatusResponse,
)
async def get_upload_request_status(
    request: Request,
    request_id: str,
    t: TokenParam = "",
    db: AsyncSession = Depends(get_db),
) -> Any:
    request_ctx = get_request_context(request)
    status = await upload_requests_service.get_portal_status(
        db,
        request_id,
        t,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        correlation_id=request_ctx["request_id"],
    )
    data = PortalStatusResponse(
        request_id=status.request_id,
        status=status.status,
        vendor_name=status.vendor_name,
        work_order_title=status.work_order_title,
        work_order_number=status.work_order_number,
        allowed_doc_types=status.allowed_doc_types,
        expires_at=status.expires_at,
        max_files=status.max_files,
        max_total_bytes=status.max_total_bytes,
        max_file_bytes=status.max_file_bytes,
        allowed_mime_types=status.allowed_mime_types,
        used_files=status.used_files,
        used_bytes=status.used_bytes,
        message=status.message,
        uploaded_files=[
            PortalFileResponse(
                id=item.id,
                file_name=item.file_name,
                doc_type=item.doc_type,
                mime_type=item.mime_type,
                status=item.status,
                size_bytes=item.size_bytes,
                uploaded_at=item.uploaded_at,
            )
            for item in status.uploaded_files
        ],
    )
    return success_response(request=request, data=data)


@router.post(
    "/{request_id}/files",
    status_code=201,
    response_model=SuccessEnvelope[SignedUploadResponse] | SignedUploadResponse,
)
async def request_signed_upload(
    request: Request,
    request_id: str,
    payload: FileUploadBody,
    t: TokenParam = "",
    db: AsyncSession = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
) -> Any:
    request_ctx = get_request_context(request)
    signed = await create_signed_upload_url(
        db,
        request_id,
        t,
        FileMeta(
            file_name=payload.file_name,
            mime_type=payload.mime_type,
            size_bytes=payload.size_bytes,
            doc_type=payload.doc_type,
        ),
        object_store=object_store,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        correlation_id=request_ctx["request_id"],
    )
    data = SignedUploadResponse(
        upload_file_id=signed.upload_file_id,
        signed_url=signed.signed_url,
        method=signed.method,
        headers=signed.headers,
        storage_path=signed.storage_path,
        expires_at=signed.expires_at,
    )
    return success_response(request=request, data=data)


@router.post(
    "/{request_id}/files/{upload_file_id}/finalize",
    response_model=SuccessEnvelope[FinalizeResponse] | FinalizeResponse,
)
async def finalize_uploaded_file(
    request: Request,
    request_id: str,
    upload_file_id: str,
    payload: FinalizeBody | None = Body(default=None),
    t: TokenParam = "",
    db: AsyncSession = Depends(get_db),
) -> Any:
    request_ctx = get_request_context(request)
    body = payload or FinalizeBody()
    result = await finalize_upload(
        db,
        request_id,
        t,
        upload_file_id,
        sha256=body.sha256,
        size_bytes=body.size_bytes,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        correlation_id=request_ctx["request_id"],
    )
    data = FinalizeResponse(
        upload_file_id=result.upload_file_id,
        document_id=result.document_id,
        status=result.status,
        already_finalized=result.already_finalized,
    )
    return success_response(request=request, data=data)


@router.post(
    "/{request_id}/complete",
    response_model=SuccessEnvelope[CompleteResponse] | CompleteResponse,
)
async def complete_upload_request(
    request: Request,
    request_id: str,
    t: TokenParam = "",
    db: AsyncSession = Depends(get_db),
) -> Any:
    request_ctx = get_request_context(request)
    view = await upload_requests_service.mark_completed(
        db,
        request_id,
        t,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        correlation_id=request_ctx["request_id"],
    )
    data = CompleteResponse(request_id=view.id, status=view.status, completed_at=view.completed_at)
    return success_response(request=request, data=data)
