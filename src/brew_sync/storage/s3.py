"""S3-compatible object storage backend (AWS S3, MinIO, OSS, COS ...).

Object stores have no directories: ``ensure_directory`` is a no-op and
``list`` is a paginated ``ListObjectsV2`` below the configured prefix.
All boto3 clients are created with a botocore ``Config`` carrying explicit
timeouts so one slow call cannot stall a pass.
"""

from __future__ import annotations

import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
)

from ..config import RemoteConfig
from ..exceptions import ConnectivityError, RemoteStoreError
from .base import RemoteEntry

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_AUTH_CODES = {
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3Store:
    """Remote store over one bucket/prefix.

    Args:
        config: Validated ``RemoteConfig`` with ``backend == "s3"``.
        client: Optional pre-built boto3 S3 client (used by tests).
    """

    def __init__(self, config: RemoteConfig, client=None) -> None:
        self.config = config
        self.bucket = config.bucket
        self.prefix = config.remote_root.strip("/")
        self._client = client

    @property
    def client(self):
        """Lazily created boto3 S3 client (thread-safe once built)."""
        if self._client is None:
            boto_config = BotoConfig(
                connect_timeout=self.config.connect_timeout,
                read_timeout=self.config.read_timeout,
                retries={"max_attempts": 2, "mode": "standard"},
            )
            kwargs = {
                "region_name": self.config.region,
                "config": boto_config,
                "verify": not self.config.insecure,
            }
            if self.config.endpoint:
                kwargs["endpoint_url"] = self.config.endpoint
            if self.config.access_key_id:
                kwargs["aws_access_key_id"] = self.config.access_key_id
                kwargs["aws_secret_access_key"] = (
                    self.config.secret_access_key
                )
            self._client = boto3.client("s3", **kwargs)
        return self._client

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def _key(self, path: str) -> str:
        path = path.strip("/")
        return f"{self.prefix}/{path}" if self.prefix else path

    def _relative(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + "/"):
            return key[len(self.prefix) + 1 :]
        return key

    def _translate(self, exc: Exception, action: str) -> RemoteStoreError:
        if isinstance(exc, (EndpointConnectionError, NoCredentialsError)):
            return ConnectivityError(f"S3 {action} failed: {exc}")
        if isinstance(exc, ClientError) and _error_code(exc) in _AUTH_CODES:
            return ConnectivityError(f"S3 {action} rejected: {exc}")
        return RemoteStoreError(f"S3 {action} failed: {exc}")

    # ------------------------------------------------------------------
    # RemoteStore protocol
    # ------------------------------------------------------------------

    def test_connection(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as exc:
            raise ConnectivityError(
                f"S3 bucket '{self.bucket}' not reachable: {exc}"
            ) from exc
        logger.debug("S3 connection verified: %s/%s", self.bucket, self.prefix)

    def list(self, prefix: str = "") -> list[RemoteEntry]:
        key_prefix = self._key(prefix)
        if key_prefix:
            key_prefix = key_prefix.rstrip("/") + "/"
        entries: list[RemoteEntry] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(
                Bucket=self.bucket, Prefix=key_prefix
            ):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    entries.append(
                        RemoteEntry(
                            path=self._relative(key),
                            size=obj.get("Size"),
                            last_modified=obj.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, "list") from exc
        return sorted(entries, key=lambda e: e.path)

    def upload(self, path: str, data: bytes) -> None:
        content_type = (
            "application/json"
            if path.endswith(".json")
            else "application/octet-stream"
        )
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._key(path),
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, f"upload of {path}") from exc
        logger.debug("Uploaded %s (%d bytes)", path, len(data))

    def download(self, path: str) -> bytes | None:
        try:
            response = self.client.get_object(
                Bucket=self.bucket, Key=self._key(path)
            )
            return response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise self._translate(exc, f"download of {path}") from exc
        except BotoCoreError as exc:
            raise self._translate(exc, f"download of {path}") from exc

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(path))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, f"delete of {path}") from exc
        logger.debug("Deleted remote %s", path)

    def copy(self, source: str, destination: str) -> None:
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                Key=self._key(destination),
                CopySource={"Bucket": self.bucket, "Key": self._key(source)},
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, f"copy of {source}") from exc
        logger.debug("Copied %s to %s", source, destination)

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise self._translate(exc, f"head of {path}") from exc
        except BotoCoreError as exc:
            raise self._translate(exc, f"head of {path}") from exc
        return True

    def ensure_directory(self, path: str) -> None:
        """Object stores have no directories."""
        return None
