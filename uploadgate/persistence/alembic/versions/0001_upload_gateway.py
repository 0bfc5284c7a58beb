"""upload gateway

Revision ID: 0001_upload_gateway
Revises: 
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_upload_gateway"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Reference rows owned by the work-order system; created here so local setups can label the portal.
    op.create_table(
        "work_orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("work_order_number", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_work_orders_org_id", "work_orders", ["org_id"])

    op.create_table(
        "vendors",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("vendor_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_vendors_org_id", "vendors", ["org_id"])

    op.create_table(
        "upload_requests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("work_order_id", sa.String(), nullable=False),
        sa.Column("vendor_id", sa.String(), nullable=False),
        sa.Column("request_email", sa.String(), nullable=False),
        sa.Column("allowed_doc_types", postgresql.JSONB(), nullable=False),
        # Peppered HMAC of the raw secret; the secret itself is never stored.
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("max_files", sa.Integer(), nullable=False),
        sa.Column("max_total_bytes", sa.BigInteger(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'partially_uploaded', 'completed', 'expired', 'revoked')",
            name="ck_upload_requests_status",
        ),
        sa.CheckConstraint("max_files > 0", name="ck_upload_requests_max_files"),
        sa.CheckConstraint("max_total_bytes > 0", name="ck_upload_requests_max_total_bytes"),
    )
    op.create_unique_constraint("uq_upload_requests_token_hash", "upload_requests", ["token_hash"])
    op.create_index("ix_upload_requests_org_id", "upload_requests", ["org_id"])
    op.create_index("ix_upload_requests_vendor_id", "upload_requests", ["vendor_id"])
    op.create_index("ix_upload_requests_status", "upload_requests", ["status"])
    op.create_index(
        "ix_upload_requests_org_work_order", "upload_requests", ["org_id", "work_order_id"]
    )
    # Serves the expiry sweep over open requests.
    op.create_index(
        "ix_upload_requests_status_expires_at", "upload_requests", ["status", "expires_at"]
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("sha256", sa.String(), nullable=True),
        sa.Column("storage_bucket", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("source_upload_file_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_unique_constraint("uq_documents_storage_path", "documents", ["storage_path"])
    # One document per finalized upload file.
    op.create_unique_constraint(
        "uq_documents_source_upload_file_id", "documents", ["source_upload_file_id"]
    )
    op.create_index("ix_documents_org_id", "documents", ["org_id"])

    op.create_table(
        "upload_files",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "upload_request_id",
            sa.String(),
            sa.ForeignKey("upload_requests.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("work_order_id", sa.String(), nullable=False),
        sa.Column("vendor_id", sa.String(), nullable=False),
        sa.Column("doc_type", sa.String(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("storage_bucket", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("sha256", sa.String(), nullable=True),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=True),
        sa.Column("uploader_ip", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'uploading', 'stored', 'failed')",
            name="ck_upload_files_status",
        ),
        sa.CheckConstraint("size_bytes > 0", name="ck_upload_files_size_bytes"),
    )
    op.create_unique_constraint("uq_upload_files_storage_path", "upload_files", ["storage_path"])
    op.create_unique_constraint("uq_upload_files_document_id", "upload_files", ["document_id"])
    op.create_index("ix_upload_files_org_id", "upload_files", ["org_id"])
    op.create_index(
        "ix_upload_files_request_status", "upload_files", ["upload_request_id", "status"]
    )

    op.create_table(
        "work_order_documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("work_order_id", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("doc_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("work_order_id", "document_id", name="uq_work_order_documents_doc"),
    )
    op.create_index("ix_work_order_documents_org_id", "work_order_documents", ["org_id"])
    op.create_index(
        "ix_work_order_documents_work_order_id", "work_order_documents", ["work_order_id"]
    )

    op.create_table(
        "vendor_documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("vendor_id", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("doc_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("vendor_id", "document_id", name="uq_vendor_documents_doc"),
    )
    op.create_index("ix_vendor_documents_org_id", "vendor_documents", ["org_id"])
    op.create_index("ix_vendor_documents_vendor_id", "vendor_documents", ["vendor_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("org_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_org_id", "audit_events", ["org_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_entity", table_name="audit_events")
    op.drop_index("ix_audit_events_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_request_id", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_org_id", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_vendor_documents_vendor_id", table_name="vendor_documents")
    op.drop_index("ix_vendor_documents_org_id", table_name="vendor_documents")
    op.drop_table("vendor_documents")

    op.drop_index("ix_work_order_documents_work_order_id", table_name="work_order_documents")
    op.drop_index("ix_work_order_documents_org_id", table_name="work_order_documents")
    op.drop_table("work_order_documents")

    op.drop_index("ix_upload_files_request_status", table_name="upload_files")
    op.drop_index("ix_upload_files_org_id", table_name="upload_files")
    op.drop_table("upload_files")

    op.drop_index("ix_documents_org_id", table_name="documents")
    op.drop_table("documents")

    op.drop_index("ix_upload_requests_status_expires_at", table_name="upload_requests")
    op.drop_index("ix_upload_requests_org_work_order", table_name="upload_requests")
    op.drop_index("ix_upload_requests_status", table_name="upload_requests")
    op.drop_index("ix_upload_requests_vendor_id", table_name="upload_requests")
    op.drop_index("ix_upload_requests_org_id", table_name="upload_requests")
    op.drop_table("upload_requests")

    op.drop_index("ix_vendors_org_id", table_name="vendors")
    op.drop_table("vendors")
    op.drop_index("ix_work_orders_org_id", table_name="work_orders")
    op.drop_table("work_orders")
