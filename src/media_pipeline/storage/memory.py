"""Process-local storage adapter, used as a failover target and in tests."""

import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from ..core.config import AdapterConfig
from ..core.crypto import sign_token
from ..core.exceptions import ObjectNotFoundError, StorageError
from ..core.models import (
    ListOptions,
    ListPage,
    ObjectDescriptor,
    UploadOptions,
    UploadResult,
)
from .base import META_CONTENT_HASH, META_UPLOADED_AT, StorageAdapter, validate_key


class MemoryStorageAdapter(StorageAdapter):
    """Keeps every object in a dict guarded by a lock."""

    def __init__(self, config: Optional[AdapterConfig] = None, name: str = "memory"):
        self._name = name
        super().__init__(config)
        self._objects: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._presign_secret = (self.config.presign_secret or name).encode("utf-8")

    @property
    def name(self) -> str:
        return self._name

    def connect(self) -> None:
        self._connected = True
        self.logger.info(f"Memory storage '{self._name}' ready")

    def upload(self, data: bytes, key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        options = options or UploadOptions()
        start = time.perf_counter()
        success = False
        try:
            self.require_connection()
            content_type = self.resolve_content_type(data, key, options)
            self.validate_upload(data, key, content_type)
            payload, internal = self.encode_payload(data, options)
            metadata = {**self.user_metadata(options), **internal}
            with self._lock:
                if not options.overwrite and key in self._objects:
                    raise StorageError(f"Object already exists: {key}", code="AlreadyExists")
                self._objects[key] = {
                    "payload": payload,
                    "size": len(data),
                    "content_type": content_type,
                    "etag": internal[META_CONTENT_HASH],
                    "last_modified": datetime.fromisoformat(internal[META_UPLOADED_AT]),
                    "metadata": metadata,
                }
            success = True
            return UploadResult(
                key=key,
                location=f"memory://{self._name}/{key}",
                etag=internal[META_CONTENT_HASH],
                size=len(data),
                stored_size=len(payload),
                content_type=content_type,
                metadata=metadata,
            )
        finally:
            self.record("upload", start, size=len(data), success=success)

    def _get(self, key: str) -> Dict[str, Any]:
        validate_key(key)
        with self._lock:
            stored = self._objects.get(key)
        if stored is None:
            raise ObjectNotFoundError(key)
        return stored

    def download(self, key: str, options: Optional[Dict[str, Any]] = None) -> bytes:
        start = time.perf_counter()
        success = False
        try:
            self.require_connection()
            stored = self._get(key)
            data = self.decode_payload(stored["payload"], stored["metadata"], key)
            success = True
            return data
        finally:
            self.record("download", start, success=success)

    def delete(self, key: str, options: Optional[Dict[str, Any]] = None) -> bool:
        self.require_connection()
        validate_key(key)
        with self._lock:
            return self._objects.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        self.require_connection()
        with self._lock:
            return key in self._objects

    def _describe(self, key: str, stored: Dict[str, Any]) -> ObjectDescriptor:
        return ObjectDescriptor(
            key=key,
            size=stored["size"],
            etag=stored["etag"],
            content_type=stored["content_type"],
            last_modified=stored["last_modified"],
            metadata=dict(stored["metadata"]),
        )

    def get_metadata(self, key: str) -> ObjectDescriptor:
        self.require_connection()
        return self._describe(key, self._get(key))

    def list(self, prefix: str = "", options: Optional[ListOptions] = None) -> ListPage:
        self.require_connection()
        options = options or ListOptions()
        with self._lock:
            keys = sorted(key for key in self._objects if key.startswith(prefix))
            snapshot = {key: self._objects[key] for key in keys}
        offset = int(options.continuation_token) if options.continuation_token else 0
        page_keys = keys[offset:offset + options.limit]
        next_offset = offset + len(page_keys)
        has_more = next_offset < len(keys)
        return ListPage(
            items=[self._describe(key, snapshot[key]) for key in page_keys],
            total_count=len(keys),
            has_more=has_more,
            next_token=str(next_offset) if has_more else None,
        )

    def generate_presigned_url(self, key: str, operation: str = "get", expires_in: int = 3600) -> str:
        self.require_connection()
        validate_key(key)
        expires = int(time.time()) + expires_in
        signature = sign_token(self._presign_secret, f"{operation}:{key}:{expires}")
        query = urlencode({"operation": operation, "expires": expires, "signature": signature})
        return f"memory://{self._name}/{quote(key)}?{query}"

    def copy(self, source_key: str, destination_key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        self.require_connection()
        validate_key(destination_key)
        stored = self._get(source_key)
        with self._lock:
            if options is not None and not options.overwrite and destination_key in self._objects:
                raise StorageError(f"Object already exists: {destination_key}", code="AlreadyExists")
            self._objects[destination_key] = {**stored, "metadata": dict(stored["metadata"])}
        return UploadResult(
            key=destination_key,
            location=f"memory://{self._name}/{destination_key}",
            etag=stored["etag"],
            size=stored["size"],
            stored_size=len(stored["payload"]),
            content_type=stored["content_type"],
            metadata=dict(stored["metadata"]),
        )

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()
