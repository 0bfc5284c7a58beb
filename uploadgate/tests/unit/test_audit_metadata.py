from __future__ import annotations

import pytest

from uploadgate.domain.events import (
    AUDIT_EVENT_SCHEMAS,
    EVENT_FILE_UPLOADED,
    EVENT_REQUEST_EXPIRED,
)
from uploadgate.services.audit import sanitize_metadata, validate_metadata


def test_audit_redacts_tokens_and_secrets() -> None:
    payload = {
        "raw_token": "abc",
        "client_secret": "super-secret",
        "nested": {"authorization": "Bearer abc", "signed_url": "https://s3/x?sig"},
        "items": [{"password": "p"}],
        "safe": "value",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["raw_token"] == "[REDACTED]"
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["signed_url"] == "[REDACTED]"
    assert sanitized["items"][0]["password"] == "[REDACTED]"
    assert sanitized["safe"] == "value"


def test_every_event_type_has_a_schema() -> None:
    assert set(AUDIT_EVENT_SCHEMAS) == {
        "request.created",
        "request.opened",
        "request.expired",
        "request.completed",
        "request.revoked",
        "file.url_issued",
        "file.failed",
        "file.uploaded",
    }


def test_validate_metadata_fills_optional_fields() -> None:
    payload = validate_metadata(
        EVENT_FILE_UPLOADED,
        {
            "upload_request_id": "req-1",
            "document_id": "doc-1",
            "file_name": "a.pdf",
            "doc_type": "invoice",
            "size_bytes": 10,
        },
    )
    assert payload["sha256"] is None


def test_validate_metadata_rejects_unknown_keys_and_types() -> None:
    with pytest.raises(ValueError):
        validate_metadata(
            EVENT_REQUEST_EXPIRED,
            {"previous_status": "pending", "expires_at": "x", "trigger": "cron"},
        )
    with pytest.raises(ValueError):
        validate_metadata("request.opened", {"status": "pending", "raw_secret": "leak"})
    with pytest.raises(ValueError):
        validate_metadata("request.unknown", {})
