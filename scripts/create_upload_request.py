from __future__ import annotations

import argparse
import asyncio
import sys

from uploadgate.core.errors import UploadGatewayError
from uploadgate.core.logging import configure_logging
from uploadgate.persistence.db import SessionLocal
from uploadgate.services.upload_requests import create_request


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue a vendor upload link for a work order")
    parser.add_argument("--org", required=True, help="Organization identifier")
    parser.add_argument("--issuer", required=True, help="Staff user id recorded as issuer")
    parser.add_argument("--work-order", required=True, help="Work order id")
    parser.add_argument("--vendor", required=True, help="Vendor id")
    parser.add_argument("--email", required=True, help="Vendor email the link is delivered to")
    parser.add_argument(
        "--doc-type",
        action="append",
        dest="doc_types",
        default=None,
        help="Allowed document type (repeatable; defaults from settings)",
    )
    parser.add_argument("--ttl-hours", type=int, default=None)
    parser.add_argument("--max-files", type=int, default=None)
    parser.add_argument("--max-total-bytes", type=int, default=None)
    parser.add_argument("--message", default=None, help="Note shown to the vendor")
    return parser


async def _create(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        created = await create_request(
            session,
            org_id=args.org,
            issuer_id=args.issuer,
            work_order_id=args.work_order,
            vendor_id=args.vendor,
            request_email=args.email,
            allowed_doc_types=args.doc_types,
            ttl_hours=args.ttl_hours,
            max_files=args.max_files,
            max_total_bytes=args.max_total_bytes,
            message=args.message,
        )

    # The portal URL embeds the secret; it is printed once and never stored.
    print("Upload request created:")
    print(f"  request_id: {created.request_id}")
    print(f"  expires_at: {created.expires_at.isoformat()}")
    print("  portal_url: ")
    print(f"    {created.portal_url}")
    return 0


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create(args))
    except UploadGatewayError as exc:
        print(f"create_upload_request failed: {exc.code} {exc.message}", file=sys.stderr)
        return 2
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_upload_request failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
