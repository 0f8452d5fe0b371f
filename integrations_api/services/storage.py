from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from integrations_api.core.config import get_settings
from integrations_api.services.errors import ObjectNotFoundError, StorageUnavailableError

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}


def output_key(package_name: str) -> str:
    return f"outputs/{package_name}.json"


class ObjectStorage:
    """S3-compatible object store (MinIO in development) read by the job consumer."""

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        region: str,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region,
                config=Config(s3={"addressing_style": "path"}, retries={"max_attempts": 3}),
            )
        return self._client

    async def get(self, key: str, *, bucket: str | None = None) -> bytes:
        return await asyncio.to_thread(self._get_sync, bucket or self.bucket, key)

    def _get_sync(self, bucket: str, key: str) -> bytes:
        try:
            response = self._get_client().get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"object not found: {bucket}/{key}") from exc
            raise StorageUnavailableError(f"failed to fetch {bucket}/{key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise StorageUnavailableError(f"failed to fetch {bucket}/{key}: {exc}") from exc


@lru_cache
def get_storage() -> ObjectStorage:
    settings = get_settings()
    return ObjectStorage(
        bucket=settings.s3_bucket_name,
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key.get_secret_value(),
        region=settings.s3_region,
    )
