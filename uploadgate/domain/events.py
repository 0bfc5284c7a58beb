from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


# Bump when a metadata schema changes shape; stored on every audit row.
AUDIT_SCHEMA_VERSION = 1

EVENT_REQUEST_CREATED = "request.created"
EVENT_REQUEST_OPENED = "request.opened"
EVENT_REQUEST_EXPIRED = "request.expired"
EVENT_REQUEST_COMPLETED = "request.completed"
EVENT_REQUEST_REVOKED = "request.revoked"
EVENT_FILE_URL_ISSUED = "file.url_issued"
EVENT_FILE_FAILED = "file.failed"
EVENT_FILE_UPLOADED = "file.uploaded"

ENTITY_UPLOAD_REQUEST = "upload_request"
ENTITY_UPLOAD_FILE = "upload_file"

ActorType = Literal["staff", "vendor", "system"]


class _EventMetadata(BaseModel):
    # Reject unknown keys so the audit trail stays machine-checkable.
    model_config = {"extra": "forbid"}


class RequestCreatedMetadata(_EventMetadata):
    work_order_id: str
    vendor_id: str
    request_email: str
    allowed_doc_types: list[str]
    max_files: int
    max_total_bytes: int
    expires_at: str


class RequestOpenedMetadata(_EventMetadata):
    status: str


class RequestExpiredMetadata(_EventMetadata):
    previous_status: str
    expires_at: str
    trigger: Literal["validate", "sweep"]


class RequestCompletedMetadata(_EventMetadata):
    stored_files: int


class RequestRevokedMetadata(_EventMetadata):
    previous_status: str


class FileUrlIssuedMetadata(_EventMetadata):
    upload_request_id: str
    doc_type: str
    file_name: str
    mime_type: str
    size_bytes: int
    storage_path: str


class FileFailedMetadata(_EventMetadata):
    upload_request_id: str
    reason: str


class FileUploadedMetadata(_EventMetadata):
    upload_request_id: str
    document_id: str
    file_name: str
    doc_type: str
    size_bytes: int
    sha256: str | None = None


AUDIT_EVENT_SCHEMAS: dict[str, type[_EventMetadata]] = {
    EVENT_REQUEST_CREATED: RequestCreatedMetadata,
    EVENT_REQUEST_OPENED: RequestOpenedMetadata,
    EVENT_REQUEST_EXPIRED: RequestExpiredMetadata,
    EVENT_REQUEST_COMPLETED: RequestCompletedMetadata,
    EVENT_REQUEST_REVOKED: RequestRevokedMetadata,
    EVENT_FILE_URL_ISSUED: FileUrlIssuedMetadata,
    EVENT_FILE_FAILED: FileFailedMetadata,
    EVENT_FILE_UPLOADED: FileUploadedMetadata,
}
