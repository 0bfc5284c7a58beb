from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from uploadgate.apps.api.deps import Principal, get_db, require_role
from uploadgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from uploadgate.apps.api.response import SuccessEnvelope, success_response
from uploadgate.services import upload_requests as upload_requests_service
from uploadgate.services.audit import get_request_context


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/upload-requests", tags=["upload-requests"], responses=DEFAULT_ERROR_RESPONSES)


class CreateUploadRequestBody(BaseModel):
    work_order_id: str = Field(min_length=1)
    vendor_id: str = Field(min_length=1)
    request_email: str = Field(min_length=3, max_length=320)
    allowed_doc_types: list[str] | None = None
    ttl_hours: int | None = Field(default=None, ge=1)
    max_files: int | None = Field(default=None, ge=1)
    max_total_bytes: int | None = Field(default=None, ge=1)
    message: str | None = Field(default=None, max_length=2000)

    # Org and issuer come from the asserted identity, never from the payload.
    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "work_order_id": "wo_123",
                    "vendor_id": "vendor_456",
                    "request_email": "billing@vendor.example",
                    "allowed_doc_types": ["invoice", "quote"],
                    "ttl_hours": 72,
                    "max_files": 5,
                    "message": "Please upload the final invoice.",
                }
            ]
        },
    }


class CreatedUploadRequestResponse(BaseModel):
    request_id: str
    # Carries the one-time secret in its ?t= parameter; shown to staff exactly once.
    portal_url: str
    expires_at: datetime


class UploadRequestResponse(BaseModel):
    id: str
    work_order_id: str
    vendor_id: str
    request_email: str
    allowed_doc_types: list[str]
    status: str
    expires_at: datetime
    max_files: int
    max_total_bytes: int
    message: str | None
    created_by: str | None
    created_at: datetime | None
    completed_at: datetime | None
    revoked_at: datetime | None
    revoked_by: str | None
    stored_files: int | None = None


class RevokeResponse(BaseModel):
    request: UploadRequestResponse
    changed: bool


class AuditEventResponse(BaseModel):
    id: int
    event_type: str
    entity_type: str
    entity_id: str
    actor_type: str
    actor_id: str | None
    metadata: dict[str, Any]
    schema_version: int
    request_id: str | None
    created_at: datetime | None


def _to_response(
    view: upload_requests_service.UploadRequestView, *, stored_files: int | None = None
) -> UploadRequestResponse:
    return UploadRequestResponse(
        id=view.id,
        work_order_id=view.work_order_id,
        vendor_id=view.vendor_id,
        request_email=view.request_email,
        allowed_doc_types=view.allowed_doc_types,
        status=view.status,
        expires_at=view.expires_at,
        max_files=view.max_files,
        max_total_bytes=view.max_total_bytes,
        message=view.message,
        created_by=view.created_by,
        created_at=view.created_at,
        completed_at=view.completed_at,
        revoked_at=view.revoked_at,
        revoked_by=view.revoked_by,
        stored_files=stored_files,
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[CreatedUploadRequestResponse] | CreatedUploadRequestResponse,
)
async def create_upload_request(
    request: Request,
    payload: CreateUploadRequestBody,
    principal: Principal = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
) -> Any:
    request_ctx = get_request_context(request)
    created = await upload_requests_service.create_request(
        db,
        org_id=principal.org_id,
        issuer_id=principal.user_id,
        work_order_id=payload.work_order_id,
        vendor_id=payload.vendor_id,
        request_email=payload.request_email,
        allowed_doc_types=payload.allowed_doc_types,
        ttl_hours=payload.ttl_hours,
        max_files=payload.max_files,
        max_total_bytes=payload.max_total_bytes,
        message=payload.message,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        request_id=request_ctx["request_id"],
    )
    data = CreatedUploadRequestResponse(
        request_id=created.request_id,
        portal_url=created.portal_url,
        expires_at=created.expires_at,
    )
    return success_response(request=request, data=data)


@router.get(
    "",
    response_model=SuccessEnvelope[list[UploadRequestResponse]] | list[UploadRequestResponse],
)
async def list_upload_requests(
    request: Request,
    work_order_id: str = Query(..., min_length=1),
    principal: Principal = Depends(require_role("viewer")),
    db: AsyncSession = Depends(get_db),
) -> Any:
    summaries = await upload_requests_service.list_requests_for_work_order(
        db, org_id=principal.org_id, work_order_id=work_order_id
    )
    data = [_to_response(item.request, stored_files=item.stored_files) for item in summaries]
    return success_response(request=request, data=data)


@router.post(
    "/{request_id}/revoke",
    response_model=SuccessEnvelope[RevokeResponse] | RevokeResponse,
)
async def revoke_upload_request(
    request: Request,
    request_id: str,
    principal: Principal = Depends(require_role("staff")),
    db: AsyncSession = Depends(get_db),
) -> Any:
    request_ctx = get_request_context(request)
    result = await upload_requests_service.revoke(
        db,
        org_id=principal.org_id,
        request_id=request_id,
        actor_id=principal.user_id,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        correlation_id=request_ctx["request_id"],
    )
    data = RevokeResponse(request=_to_response(result.request), changed=result.changed)
    return success_response(request=request, data=data)


@router.get(
    "/{request_id}/audit-events",
    response_model=SuccessEnvelope[list[AuditEventResponse]] | list[AuditEventResponse],
)
async def list_upload_request_audit_events(
    request: Request,
    request_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_role("viewer")),
    db: AsyncSession = Depends(get_db),
) -> Any:
    events = await upload_requests_service.list_audit_events(
        db,
        org_id=principal.org_id,
        request_id=request_id,
        offset=offset,
        limit=limit,
    )
    data = [
        AuditEventResponse(
            id=event.id,
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_type=event.actor_type,
            actor_id=event.actor_id,
            metadata=event.metadata,
            schema_version=event.schema_version,
            request_id=event.request_id,
            created_at=event.created_at,
        )
        for event in events
    ]
    return success_response(request=request, data=data)
