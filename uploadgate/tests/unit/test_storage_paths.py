from __future__ import annotations

import pytest

from uploadgate.core.errors import InvalidChecksumError
from uploadgate.services.finalizer import normalize_sha256
from uploadgate.services.signed_uploads import build_storage_path, sanitize_file_name


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("invoice.pdf", "invoice.pdf"),
        ("my invoice (final).pdf", "my_invoice_final_.pdf"),
        ("../../etc/passwd", ".._.._etc_passwd"),
        ("façade  plan.PDF", "fa_ade_plan.PDF"),
        ("", "file"),
    ],
)
def test_sanitize_file_name(raw: str, expected: str) -> None:
    assert sanitize_file_name(raw) == expected


def test_sanitize_file_name_truncates_long_names() -> None:
    assert len(sanitize_file_name("a" * 500 + ".pdf")) == 200


def test_storage_path_layout() -> None:
    path = build_storage_path(
        org_id="org1",
        work_order_id="wo1",
        vendor_id="v1",
        upload_request_id="req1",
        upload_file_id="file1",
        file_name="Quote #7.pdf",
    )
    assert path == "org/org1/work_orders/wo1/vendors/v1/upload_requests/req1/file1-Quote_7.pdf"


def test_normalize_sha256() -> None:
    digest = "A" * 64
    assert normalize_sha256(f" {digest} ") == "a" * 64
    assert normalize_sha256(None) is None
    with pytest.raises(InvalidChecksumError):
        normalize_sha256("abc")
    with pytest.raises(InvalidChecksumError):
        normalize_sha256("g" * 64)
