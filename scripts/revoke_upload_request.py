from __future__ import annotations

import argparse
import asyncio
import sys

from uploadgate.core.errors import UploadRequestNotFoundError
from uploadgate.core.logging import configure_logging
from uploadgate.persistence.db import SessionLocal
from uploadgate.services.upload_requests import revoke


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Revoke a vendor upload link")
    parser.add_argument("request_id", help="Upload request id to revoke")
    parser.add_argument("--org", required=True, help="Organization owning the request")
    parser.add_argument("--actor", default="revoke_upload_request", help="Actor id recorded in the audit trail")
    return parser


async def _revoke(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        result = await revoke(
            session,
            org_id=args.org,
            request_id=args.request_id,
            actor_id=args.actor,
        )
    if result.changed:
        print(f"Revoked upload request {result.request.id}")
    else:
        print(f"Upload request {result.request.id} left unchanged (status={result.request.status})")
    return 0


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke(args))
    except UploadRequestNotFoundError:
        print(f"revoke_upload_request failed: {args.request_id} not found", file=sys.stderr)
        return 2
    except Exception as exc:  # noqa: BLE001 - surface operator failures clearly
        print(f"revoke_upload_request failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
