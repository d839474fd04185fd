"""
S3 storage adapter implementation using boto3.

Supports:
- AWS S3
- S3-compatible services (MinIO, DigitalOcean Spaces, etc.)
"""

import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import AdapterConfig
from ..core.error_handling import is_transient_error
from ..core.exceptions import ConfigurationError, ObjectNotFoundError, StorageError
from ..core.models import (
    HealthStatus,
    ListOptions,
    ListPage,
    ObjectDescriptor,
    ProviderHealth,
    UploadOptions,
    UploadResult,
)
from .base import META_CONTENT_HASH, META_ORIGINAL_SIZE, StorageAdapter, validate_key

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client

NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")
PRESIGN_OPERATIONS = {"get": "get_object", "put": "put_object", "delete": "delete_object"}


def translate_error(error: Exception, key: Optional[str] = None) -> StorageError:
    """Map a botocore failure onto the storage error hierarchy."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        if key is not None and code in NOT_FOUND_CODES:
            return ObjectNotFoundError(key)
        translated = StorageError(
            f"S3 request failed ({code}): {error}",
            code=code or None,
            transient=is_transient_error(error),
        )
    else:
        translated = StorageError(
            f"S3 request failed: {error}",
            code=type(error).__name__,
            transient=is_transient_error(error),
        )
    translated.__cause__ = error
    return translated


class S3StorageAdapter(StorageAdapter):
    """
    S3/S3-compatible storage adapter.

    Compression and encryption flags travel as S3 user metadata, so any
    adapter instance with the same key can read the object back.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        config: Optional[AdapterConfig] = None,
        client: Optional["S3Client"] = None,
    ):
        super().__init__(config)
        if not bucket:
            raise ConfigurationError("S3 bucket required. Set MEDIA_PIPELINE_S3_BUCKET or pass bucket.")
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._client = client

    @property
    def name(self) -> str:
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    def _create_client(self) -> "S3Client":
        config = Config(
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=5,
            read_timeout=30,
        )
        return boto3.client(
            "s3",
            endpoint_url=self._endpoint_url,
            region_name=self._region,
            config=config,
        )

    def connect(self) -> None:
        if self._client is None:
            self._client = self._create_client()
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc
        self._connected = True
        self.logger.info(f"S3 storage initialized: bucket={self._bucket}")

    @property
    def client(self) -> "S3Client":
        self.require_connection()
        if self._client is None:
            raise StorageError(f"S3 client for {self._bucket} is not initialized", code="NotConnected")
        return self._client

    def upload(self, data: bytes, key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        options = options or UploadOptions()
        start = time.perf_counter()
        success = False
        try:
            content_type = self.resolve_content_type(data, key, options)
            self.validate_upload(data, key, content_type)
            if not options.overwrite and self.exists(key):
                raise StorageError(f"Object already exists: {key}", code="AlreadyExists")

            payload, internal = self.encode_payload(data, options)
            metadata = {**self.user_metadata(options), **internal}
            try:
                self.client.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=payload,
                    ContentType=content_type,
                    Metadata=metadata,
                )
            except (ClientError, BotoCoreError) as exc:
                self.logger.error(f"S3 upload failed for {key}: {exc}")
                raise translate_error(exc, key) from exc

            self.logger.debug(
                f"Uploaded to S3: {key} (original={len(data)}, stored={len(payload)})"
            )
            success = True
            return UploadResult(
                key=key,
                location=f"s3://{self._bucket}/{key}",
                etag=internal[META_CONTENT_HASH],
                size=len(data),
                stored_size=len(payload),
                content_type=content_type,
                metadata=metadata,
            )
        finally:
            self.record("upload", start, size=len(data), success=success)

    def download(self, key: str, options: Optional[Dict[str, Any]] = None) -> bytes:
        start = time.perf_counter()
        success = False
        size = 0
        try:
            validate_key(key)
            try:
                response = self.client.get_object(Bucket=self._bucket, Key=key)
                payload = response["Body"].read()
            except (ClientError, BotoCoreError) as exc:
                raise translate_error(exc, key) from exc
            data = self.decode_payload(payload, response.get("Metadata", {}), key)
            size = len(data)
            success = True
            return data
        finally:
            self.record("download", start, size=size, success=success)

    def exists(self, key: str) -> bool:
        validate_key(key)
        try:
            self.client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES:
                return False
            raise translate_error(exc, key) from exc
        except BotoCoreError as exc:
            raise translate_error(exc, key) from exc

    def delete(self, key: str, options: Optional[Dict[str, Any]] = None) -> bool:
        if not self.exists(key):
            return False
        try:
            self.client.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            self.logger.error(f"S3 delete failed for {key}: {exc}")
            raise translate_error(exc, key) from exc
        self.logger.debug(f"Deleted from S3: {key}")
        return True

    def get_metadata(self, key: str) -> ObjectDescriptor:
        validate_key(key)
        try:
            response = self.client.head_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, key) from exc

        metadata = response.get("Metadata", {})
        return ObjectDescriptor(
            key=key,
            size=int(metadata.get(META_ORIGINAL_SIZE, response.get("ContentLength", 0))),
            etag=metadata.get(META_CONTENT_HASH, response.get("ETag", "").strip('"')),
            content_type=response.get("ContentType", "application/octet-stream"),
            last_modified=response.get("LastModified"),
            metadata=metadata,
        )

    def list(self, prefix: str = "", options: Optional[ListOptions] = None) -> ListPage:
        options = options or ListOptions()
        params: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": prefix,
            "MaxKeys": options.limit,
        }
        if options.continuation_token:
            params["ContinuationToken"] = options.continuation_token
        try:
            response = self.client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc) from exc

        items = [
            ObjectDescriptor(
                key=obj["Key"],
                size=obj.get("Size", 0),
                etag=obj.get("ETag", "").strip('"'),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
        ]
        has_more = bool(response.get("IsTruncated"))
        return ListPage(
            items=items,
            total_count=response.get("KeyCount", len(items)),
            has_more=has_more,
            next_token=response.get("NextContinuationToken") if has_more else None,
        )

    def generate_presigned_url(self, key: str, operation: str = "get", expires_in: int = 3600) -> str:
        validate_key(key)
        client_method = PRESIGN_OPERATIONS.get(operation)
        if client_method is None:
            raise StorageError(f"Unsupported presign operation: {operation}", code="InvalidOperation")
        try:
            return self.client.generate_presigned_url(
                ClientMethod=client_method,
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, key) from exc

    def copy(self, source_key: str, destination_key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        validate_key(source_key)
        validate_key(destination_key)
        if options is not None and not options.overwrite and self.exists(destination_key):
            raise StorageError(f"Object already exists: {destination_key}", code="AlreadyExists")
        try:
            self.client.copy_object(
                Bucket=self._bucket,
                Key=destination_key,
                CopySource={"Bucket": self._bucket, "Key": source_key},
                MetadataDirective="COPY",
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, source_key) from exc

        descriptor = self.get_metadata(destination_key)
        return UploadResult(
            key=destination_key,
            location=f"s3://{self._bucket}/{destination_key}",
            etag=descriptor.etag,
            size=descriptor.size,
            content_type=descriptor.content_type,
            metadata=descriptor.metadata,
        )

    def health_check(self) -> ProviderHealth:
        """A ``head_bucket`` round trip."""
        start = time.perf_counter()
        try:
            self.client.head_bucket(Bucket=self._bucket)
        except (ClientError, BotoCoreError, StorageError) as exc:
            return ProviderHealth(
                provider=self.name,
                status=HealthStatus.UNHEALTHY,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=str(exc),
            )
        return ProviderHealth(
            provider=self.name,
            status=HealthStatus.HEALTHY,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
