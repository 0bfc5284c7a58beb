from __future__ import annotations

from datetime import timedelta
from urllib.parse import quote

from uploadgate.core.errors import StorageError
from uploadgate.domain.state import utc_now
from uploadgate.providers.storage.base import SignedUploadTarget


class FakeObjectStore:
    def __init__(self, *, base_url: str = "https://storage.test", fail: bool = False) -> None:
        # Deterministic URLs let tests assert on scope without external services.
        self._base_url = base_url.rstrip("/")
        self.fail = fail
        self.issued: list[tuple[str, str, str, int]] = []

    async def create_signed_upload_url(
        self,
        *,
        bucket: str,
        path: str,
        content_type: str,
        expires_in_s: int,
    ) -> SignedUploadTarget:
        if self.fail:
            raise StorageError("fake object store configured to fail", bucket=bucket, path=path)
        self.issued.append((bucket, path, content_type, expires_in_s))
        url = f"{self._base_url}/{quote(bucket)}/{quote(path)}?X-Expires={expires_in_s}"
        return SignedUploadTarget(
            url=url,
            expires_at=utc_now() + timedelta(seconds=expires_in_s),
            headers={"Content-Type": content_type},
        )
