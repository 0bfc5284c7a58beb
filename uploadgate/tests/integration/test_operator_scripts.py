from __future__ import annotations

import argparse

import pytest

import scripts.create_upload_request as create_script
import scripts.expire_upload_requests as expire_script
import scripts.revoke_upload_request as revoke_script
from uploadgate.core.errors import UploadRequestNotFoundError
from uploadgate.domain.events import EVENT_REQUEST_EXPIRED, EVENT_REQUEST_REVOKED
from uploadgate.domain.state import REQUEST_EXPIRED, REQUEST_REVOKED
from uploadgate.tests.utils.factories import (
    create_test_request,
    fetch_events,
    fetch_request,
    force_expired,
    new_org_id,
)


@pytest.mark.asyncio
async def test_create_script_prints_portal_url_once(capsys) -> None:
    org_id = new_org_id()
    args = create_script._build_parser().parse_args(
        [
            "--org",
            org_id,
            "--issuer",
            "ops-1",
            "--work-order",
            "wo-9",
            "--vendor",
            "vendor-9",
            "--email",
            "ap@vendor.example",
            "--doc-type",
            "invoice",
            "--doc-type",
            "quote",
            "--max-files",
            "3",
        ]
    )
    assert await create_script._create(args) == 0

    output = capsys.readouterr().out
    portal_lines = [line.strip() for line in output.splitlines() if "?t=" in line]
    assert len(portal_lines) == 1
    assert portal_lines[0].startswith("https://portal.test/vendor-upload/work-order/")
    request_id = output.split("request_id: ")[1].splitlines()[0].strip()
    stored = await fetch_request(request_id)
    assert stored.allowed_doc_types == ["invoice", "quote"]
    assert stored.max_files == 3
    assert stored.created_by == "ops-1"


@pytest.mark.asyncio
async def test_revoke_script_reports_noop_on_second_run(capsys) -> None:
    org_id, created = await create_test_request()
    args = argparse.Namespace(request_id=created.request_id, org=org_id, actor="ops-1")

    assert await revoke_script._revoke(args) == 0
    assert await revoke_script._revoke(args) == 0

    output = capsys.readouterr().out
    assert f"Revoked upload request {created.request_id}" in output
    assert "left unchanged (status=revoked)" in output
    assert (await fetch_request(created.request_id)).status == REQUEST_REVOKED
    assert len(await fetch_events(entity_id=created.request_id, event_type=EVENT_REQUEST_REVOKED)) == 1


@pytest.mark.asyncio
async def test_revoke_script_scopes_by_org() -> None:
    _org_id, created = await create_test_request()
    args = argparse.Namespace(request_id=created.request_id, org=new_org_id(), actor="ops-1")
    with pytest.raises(UploadRequestNotFoundError):
        await revoke_script._revoke(args)


@pytest.mark.asyncio
async def test_expire_script_sweeps_every_overdue_request(capsys) -> None:
    _org_a, first = await create_test_request()
    _org_b, second = await create_test_request()
    _org_c, fresh = await create_test_request()
    await force_expired(first.request_id)
    await force_expired(second.request_id)

    assert await expire_script._sweep(1, True) == 0

    assert capsys.readouterr().out.strip() == "expired_upload_requests=2"
    assert (await fetch_request(first.request_id)).status == REQUEST_EXPIRED
    assert (await fetch_request(second.request_id)).status == REQUEST_EXPIRED
    assert (await fetch_request(fresh.request_id)).status != REQUEST_EXPIRED
    assert len(await fetch_events(event_type=EVENT_REQUEST_EXPIRED)) == 2
