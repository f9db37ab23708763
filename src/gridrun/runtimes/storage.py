"""S3 archive store.

Publishes the zipped workspace once per bootstrap; every remote job fetches
its sources from the returned ``bucket/key`` location. Objects carry an
``Expires`` header so stale archives age out with the bucket's lifecycle
rules.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from gridrun.core.errors import ArchiveError
from gridrun.core.logging import get_logger

logger = get_logger(__name__)


class S3ArchiveStore:
    """
    S3-compatible archive store.

    Works with AWS S3, MinIO and LocalStack (via ``endpoint_url``).
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        expiry_days: int = 3,
        client: Any = None,
    ):
        self.bucket = bucket
        self.expiry_days = expiry_days

        if client is None:
            client_kwargs: dict[str, Any] = {
                "service_name": "s3",
                "region_name": region,
                "config": Config(signature_version="s3v4", retries={"mode": "standard"}),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client

        logger.debug("s3_store.initialized", bucket=bucket, endpoint=endpoint_url, region=region)

    def _put(self, key: str, path: Path) -> None:
        with open(path, "rb") as body:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="application/zip",
                Expires=datetime.now(UTC) + timedelta(days=self.expiry_days),
            )

    async def put_archive(self, key: str, path: Path) -> str:
        """Upload the archive at ``path``; return ``bucket/key``."""
        key = key.lstrip("/")
        try:
            await asyncio.to_thread(self._put, key, Path(path))
        except (BotoCoreError, ClientError, OSError) as exc:
            raise ArchiveError(
                f"Upload of {path} to s3://{self.bucket}/{key} failed: {exc}",
                cause=exc,
                context={"bucket": self.bucket, "key": key},
            ) from exc

        logger.info("s3_store.archive_uploaded", bucket=self.bucket, key=key, size=Path(path).stat().st_size)
        return f"{self.bucket}/{key}"

    async def close(self) -> None:
        await asyncio.to_thread(self.client.close)
