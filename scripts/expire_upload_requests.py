from __future__ import annotations

import argparse
import asyncio

from uploadgate.core.logging import configure_logging
from uploadgate.persistence.db import SessionLocal
from uploadgate.services.upload_requests import expire_overdue_requests


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Expire open upload requests past their deadline")
    parser.add_argument("--limit", type=int, default=None, help="Max requests per batch")
    parser.add_argument("--all", action="store_true", help="Repeat batches until none remain")
    return parser


async def _sweep(limit: int | None, repeat: bool) -> int:
    total = 0
    async with SessionLocal() as session:
        while True:
            expired = await expire_overdue_requests(session, limit=limit)
            total += expired
            if not repeat or expired == 0:
                break
    print(f"expired_upload_requests={total}")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    return asyncio.run(_sweep(args.limit, args.all))


if __name__ == "__main__":
    raise SystemExit(main())
