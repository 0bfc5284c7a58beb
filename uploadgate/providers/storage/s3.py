from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from uploadgate.core.errors import StorageConfigError, StorageError
from uploadgate.domain.state import utc_now
from uploadgate.providers.storage.base import SignedUploadTarget
from uploadgate.services.resilience import is_transient, retry_async


logger = logging.getLogger(__name__)

# S3 rejects presigned URLs that live longer than seven days.
_MAX_PRESIGN_SECONDS = 7 * 24 * 3600


class S3ObjectStore:
    def __init__(
        self,
        region: str,
        *,
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        if not region:
            raise StorageConfigError("s3 region is required")
        self._region = region
        self._endpoint_url = endpoint_url
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            import boto3
        except Exception as exc:  # pragma: no cover - environment-specific import
            raise StorageConfigError("AWS SDK not available. Install boto3.") from exc

        self._client = boto3.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
        )
        return self._client

    async def create_signed_upload_url(
        self,
        *,
        bucket: str,
        path: str,
        content_type: str,
        expires_in_s: int,
    ) -> SignedUploadTarget:
        if not bucket:
            raise StorageConfigError("upload bucket is not configured")
        expires_in_s = max(1, min(int(expires_in_s), _MAX_PRESIGN_SECONDS))
        client = self._get_client()
        # Bind the signature to one key and one content type; PUT cannot touch other objects.
        params = {"Bucket": bucket, "Key": path, "ContentType": content_type}
        start = time.monotonic()

        async def _call() -> str:
            return await asyncio.to_thread(
                client.generate_presigned_url,
                "put_object",
                Params=params,
                ExpiresIn=expires_in_s,
                HttpMethod="PUT",
            )

        def _retryable(exc: Exception) -> bool:
            if is_transient(exc):
                return True
            if isinstance(exc, ClientError):
                status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
                return isinstance(status, int) and status >= 500
            return False

        try:
            url = await retry_async(_call, retryable=_retryable, name="storage.s3.presign")
        except (BotoCoreError, ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.error(
                "s3_presign_failed bucket=%s latency_ms=%.1f error=%s",
                bucket,
                (time.monotonic() - start) * 1000.0,
                exc.__class__.__name__,
                exc_info=exc,
            )
            error_name = exc.__class__.__name__
            if error_name in {"NoCredentialsError", "PartialCredentialsError"}:
                raise StorageConfigError("AWS credentials missing for S3 uploads.") from exc
            raise StorageError("S3 signed upload URL request failed.") from exc

        return SignedUploadTarget(
            url=url,
            expires_at=utc_now() + timedelta(seconds=expires_in_s),
            headers={"Content-Type": content_type},
        )
