from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class SignedUploadTarget:
    # Write-only URL for exactly one object key; headers must be echoed by the client.
    url: str
    expires_at: datetime
    method: str = "PUT"
    headers: dict[str, str] | None = None


class ObjectStore(Protocol):
    async def create_signed_upload_url(
        self,
        *,
        bucket: str,
        path: str,
        content_type: str,
        expires_in_s: int,
    ) -> SignedUploadTarget:
        ...
