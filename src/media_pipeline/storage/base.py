"""
Storage adapter contract and the helpers every adapter composes with.

Adapters persist bytes for one provider. Before persistence the payload may
be gzip-compressed (only when that makes it smaller) and then encrypted with
AES-256-GCM; the flags travel in the object metadata so retrieval can undo
both steps and verify the SHA-256 of the plaintext.
"""

import posixpath
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from ..core.config import AdapterConfig
from ..core.crypto import (
    ENCRYPTION_ALGORITHM,
    compress_content,
    compute_content_hash,
    decompress_content,
    decrypt_content,
    encrypt_content,
    resolve_encryption_key,
)
from ..core.exceptions import SecurityError, StorageError, ValidationError
from ..core.keys import random_token, validate_file
from ..core.logging_config import get_logger
from ..core.mime import detect_mime_type
from ..core.models import (
    HealthStatus,
    ListOptions,
    ListPage,
    ObjectDescriptor,
    ProviderHealth,
    UploadOptions,
    UploadResult,
    utcnow,
)
from ..core.observability import OperationCounters

# Metadata keys written by the adapters themselves.
META_CONTENT_HASH = "content-hash"
META_ORIGINAL_SIZE = "original-size"
META_COMPRESSED = "compressed"
META_ENCRYPTED = "encrypted"
META_ENCRYPTION = "encryption"
META_UPLOADED_AT = "uploaded-at"
RESERVED_METADATA_KEYS = frozenset(
    {
        META_CONTENT_HASH,
        META_ORIGINAL_SIZE,
        META_COMPRESSED,
        META_ENCRYPTED,
        META_ENCRYPTION,
        META_UPLOADED_AT,
    }
)

HEALTH_CHECK_PREFIX = "_health"


def validate_key(key: str) -> None:
    """Keys are relative, NUL-free and never climb out of their root."""
    if not key or not key.strip():
        raise ValidationError("Storage key is required", field="key")
    if "\x00" in key:
        raise SecurityError("Storage key contains a NUL byte")
    if key.startswith("/") or "\\" in key:
        raise SecurityError(f"Storage key must be relative: {key}")
    if ".." in key.split("/"):
        raise SecurityError(f"Storage key contains a parent reference: {key}")


class StorageAdapter(ABC):
    """Byte-level persistence for one storage provider."""

    def __init__(self, config: Optional[AdapterConfig] = None):
        self.config = config or AdapterConfig()
        self.logger = get_logger(f"storage.{self.name}")
        self._connected = False
        self._encryption_key: Optional[bytes] = None
        self._counters = OperationCounters()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 's3', 'local')."""

    @abstractmethod
    def connect(self) -> None:
        """Open the backend; raise StorageError when it is unreachable."""

    def disconnect(self) -> None:
        self._connected = False
        self.logger.info(f"Disconnected from {self.name} storage")

    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    def upload(self, data: bytes, key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        """Persist ``data`` under ``key``."""

    @abstractmethod
    def download(self, key: str, options: Optional[Dict[str, Any]] = None) -> bytes:
        """Return the original bytes; ObjectNotFoundError when absent."""

    @abstractmethod
    def delete(self, key: str, options: Optional[Dict[str, Any]] = None) -> bool:
        """Remove the object. Returns False if it did not exist."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if object exists."""

    @abstractmethod
    def get_metadata(self, key: str) -> ObjectDescriptor:
        """Describe an object without downloading it."""

    @abstractmethod
    def list(self, prefix: str = "", options: Optional[ListOptions] = None) -> ListPage:
        """One page of objects whose keys start with ``prefix``."""

    @abstractmethod
    def generate_presigned_url(self, key: str, operation: str = "get", expires_in: int = 3600) -> str:
        """Time-limited URL granting ``operation`` on ``key``."""

    @abstractmethod
    def copy(self, source_key: str, destination_key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        """Server-side copy."""

    def health_check(self) -> ProviderHealth:
        """Upload, read back and delete a probe object."""
        start = time.perf_counter()
        key = f"{HEALTH_CHECK_PREFIX}/{random_token(12)}"
        probe = b"health-check"
        try:
            self.upload(probe, key, UploadOptions(content_type="text/plain", compress=False, encrypt=False))
            if self.download(key) != probe:
                raise StorageError("Health probe read back different bytes")
            self.delete(key)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Health check failed for {self.name}: {exc}")
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

    # --- shared helpers ----------------------------------------------------

    def require_connection(self) -> None:
        if not self._connected:
            raise StorageError(f"{self.name} storage is not connected", code="NotConnected")

    def validate_upload(self, data: bytes, key: str, content_type: Optional[str]) -> None:
        validate_key(key)
        if posixpath.basename(key).startswith("."):
            raise ValidationError(f"Hidden object names are not allowed: {key}", field="key")
        validate_file(
            data,
            posixpath.basename(key),
            mime_type=content_type,
            max_file_size=self.config.max_file_size,
            allowed_mime_types=self.config.allowed_mime_types,
        )

    def resolve_content_type(self, data: bytes, key: str, options: UploadOptions) -> str:
        return options.content_type or detect_mime_type(posixpath.basename(key), data)

    def encryption_key(self) -> bytes:
        if self._encryption_key is None:
            self._encryption_key = resolve_encryption_key(self.config.encryption_key)
        return self._encryption_key

    def encode_payload(self, data: bytes, options: UploadOptions) -> Tuple[bytes, Dict[str, str]]:
        """
        Apply optional compression then encryption.

        Returns:
            The bytes to persist and the metadata describing how to undo it.
        """
        metadata = {
            META_CONTENT_HASH: compute_content_hash(data),
            META_ORIGINAL_SIZE: str(len(data)),
            META_UPLOADED_AT: utcnow().isoformat(),
        }
        payload = data

        compress = self.config.enable_compression if options.compress is None else options.compress
        if compress:
            compressed = compress_content(data, self.config.compression_level)
            if len(compressed) < len(data):
                payload = compressed
                metadata[META_COMPRESSED] = "true"

        encrypt = self.config.enable_encryption if options.encrypt is None else options.encrypt
        if encrypt:
            payload = encrypt_content(payload, self.encryption_key())
            metadata[META_ENCRYPTED] = "true"
            metadata[META_ENCRYPTION] = ENCRYPTION_ALGORITHM

        return payload, metadata

    def decode_payload(self, payload: bytes, metadata: Dict[str, str], key: str = "") -> bytes:
        """Undo ``encode_payload`` and verify the plaintext hash."""
        data = payload
        if metadata.get(META_ENCRYPTED) == "true":
            data = decrypt_content(data, self.encryption_key())
        if metadata.get(META_COMPRESSED) == "true":
            data = decompress_content(data)

        expected = metadata.get(META_CONTENT_HASH)
        if expected and compute_content_hash(data) != expected:
            raise StorageError(f"Integrity check failed for {key}", code="IntegrityError")
        return data

    @staticmethod
    def user_metadata(options: UploadOptions) -> Dict[str, str]:
        return {
            str(name): str(value)
            for name, value in options.metadata.items()
            if name not in RESERVED_METADATA_KEYS
        }

    def record(self, operation: str, start: float, size: int = 0, success: bool = True) -> None:
        self._counters.record(operation, time.perf_counter() - start, size=size, success=success)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        return self._counters.snapshot()
