from __future__ import annotations

from functools import lru_cache

from uploadgate.core.config import get_settings
from uploadgate.core.errors import StorageConfigError
from uploadgate.providers.storage.base import ObjectStore
from uploadgate.providers.storage.fake import FakeObjectStore
from uploadgate.providers.storage.s3 import S3ObjectStore


@lru_cache
def get_object_store() -> ObjectStore:
    # One store per process so the boto3 client and its connection pool are reused.
    settings = get_settings()
    provider = (settings.object_store_provider or "s3").lower()

    if provider == "fake":
        return FakeObjectStore()
    if provider == "s3":
        return S3ObjectStore(settings.s3_region, endpoint_url=settings.s3_endpoint_url)

    raise StorageConfigError(f"Unsupported object store provider: {provider}")
