"""
Local filesystem storage adapter.

Objects live under ``base_path`` in a directory tree that mirrors the keys;
each object has a ``.meta.json`` sidecar holding its content type, hash and
encoding flags.
"""

import json
import os
import secrets
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from ..core.config import AdapterConfig
from ..core.crypto import sign_token, verify_token
from ..core.exceptions import ObjectNotFoundError, SecurityError, StorageError
from ..core.models import (
    ListOptions,
    ListPage,
    ObjectDescriptor,
    UploadOptions,
    UploadResult,
)
from .base import (
    META_CONTENT_HASH,
    META_ORIGINAL_SIZE,
    META_UPLOADED_AT,
    StorageAdapter,
    validate_key,
)

METADATA_SUFFIX = ".meta.json"
TEMP_SUFFIX = ".uploading"


class LocalStorageAdapter(StorageAdapter):
    """
    Filesystem-backed adapter for development, tests and single-host setups.

    Presigned URLs are ``file://`` URLs carrying an HMAC signature over the
    operation, key and expiry; ``verify_presigned_url`` checks them.
    """

    def __init__(self, base_path: str = "./storage", config: Optional[AdapterConfig] = None):
        super().__init__(config)
        self._base_path = Path(base_path)
        secret = self.config.presign_secret or self.config.encryption_key
        self._presign_secret = secret.encode("utf-8") if secret else secrets.token_bytes(32)

    @property
    def name(self) -> str:
        return "local"

    @property
    def base_path(self) -> Path:
        return self._base_path

    def connect(self) -> None:
        try:
            self._base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create storage directory {self._base_path}: {exc}") from exc
        if not os.access(self._base_path, os.W_OK):
            raise StorageError(f"Storage directory is not writable: {self._base_path}")
        self._connected = True
        self.logger.info(f"Local storage initialized: {self._base_path}")

    def _get_path(self, key: str) -> Path:
        """Get filesystem path for key, with path traversal protection."""
        validate_key(key)
        resolved = (self._base_path / key).resolve()
        if not resolved.is_relative_to(self._base_path.resolve()):
            raise SecurityError("Path traversal detected")
        return resolved

    def _get_metadata_path(self, key: str) -> Path:
        path = self._get_path(key)
        return path.with_name(path.name + METADATA_SUFFIX)

    def _load_record(self, key: str) -> Dict[str, Any]:
        meta_path = self._get_metadata_path(key)
        if not meta_path.exists():
            return {}
        try:
            return json.loads(meta_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            self.logger.warning(f"Failed to load metadata for {key}: {exc}")
            return {}

    def _write_atomic(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(path.name + TEMP_SUFFIX)
        temp_path.write_bytes(content)
        os.replace(temp_path, path)

    def upload(self, data: bytes, key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        options = options or UploadOptions()
        start = time.perf_counter()
        success = False
        try:
            self.require_connection()
            content_type = self.resolve_content_type(data, key, options)
            self.validate_upload(data, key, content_type)
            file_path = self._get_path(key)
            if not options.overwrite and file_path.exists():
                raise StorageError(f"Object already exists: {key}", code="AlreadyExists")

            payload, internal = self.encode_payload(data, options)
            metadata = {**self.user_metadata(options), **internal}
            record = {
                "key": key,
                "size": len(data),
                "stored_size": len(payload),
                "content_type": content_type,
                "etag": internal[META_CONTENT_HASH],
                "uploaded_at": internal[META_UPLOADED_AT],
                "metadata": metadata,
            }
            try:
                self._write_atomic(file_path, payload)
                self._write_atomic(
                    self._get_metadata_path(key), json.dumps(record, indent=2).encode("utf-8")
                )
            except OSError as exc:
                raise StorageError(f"Failed to write {key}: {exc}") from exc

            self.logger.debug(f"Uploaded to local: {key} ({len(data)} -> {len(payload)} bytes)")
            success = True
            return UploadResult(
                key=key,
                location=file_path.as_uri(),
                etag=record["etag"],
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
            self.require_connection()
            file_path = self._get_path(key)
            if not file_path.is_file():
                raise ObjectNotFoundError(key)
            payload = file_path.read_bytes()
            record = self._load_record(key)
            data = self.decode_payload(payload, record.get("metadata", {}), key)
            size = len(data)
            success = True
            return data
        finally:
            self.record("download", start, size=size, success=success)

    def delete(self, key: str, options: Optional[Dict[str, Any]] = None) -> bool:
        self.require_connection()
        file_path = self._get_path(key)
        meta_path = self._get_metadata_path(key)

        deleted = False
        if file_path.exists():
            file_path.unlink()
            deleted = True
        if meta_path.exists():
            meta_path.unlink()
        self.logger.debug(f"Deleted from local: {key} (existed={deleted})")
        return deleted

    def exists(self, key: str) -> bool:
        self.require_connection()
        return self._get_path(key).is_file()

    def get_metadata(self, key: str) -> ObjectDescriptor:
        self.require_connection()
        file_path = self._get_path(key)
        if not file_path.is_file():
            raise ObjectNotFoundError(key)
        return self._describe(key, file_path)

    def _describe(self, key: str, file_path: Path) -> ObjectDescriptor:
        record = self._load_record(key)
        metadata = record.get("metadata", {})
        if record.get("uploaded_at"):
            last_modified = datetime.fromisoformat(record["uploaded_at"])
        else:
            last_modified = datetime.fromtimestamp(file_path.stat().st_mtime)
        return ObjectDescriptor(
            key=key,
            size=int(record.get("size", metadata.get(META_ORIGINAL_SIZE, file_path.stat().st_size))),
            etag=record.get("etag", metadata.get(META_CONTENT_HASH, "")),
            content_type=record.get("content_type", "application/octet-stream"),
            last_modified=last_modified,
            metadata=metadata,
        )

    def _all_keys(self, prefix: str) -> List[str]:
        if not self._base_path.exists():
            return []
        keys = []
        for path in self._base_path.rglob("*"):
            if not path.is_file() or path.name.endswith((METADATA_SUFFIX, TEMP_SUFFIX)):
                continue
            key = path.relative_to(self._base_path).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def list(self, prefix: str = "", options: Optional[ListOptions] = None) -> ListPage:
        """List keys in lexical order; the continuation token is an offset."""
        self.require_connection()
        options = options or ListOptions()
        keys = self._all_keys(prefix)
        try:
            offset = int(options.continuation_token) if options.continuation_token else 0
        except ValueError as exc:
            raise StorageError(f"Invalid continuation token: {options.continuation_token}") from exc

        page_keys = keys[offset:offset + options.limit]
        next_offset = offset + len(page_keys)
        has_more = next_offset < len(keys)
        return ListPage(
            items=[self._describe(key, self._get_path(key)) for key in page_keys],
            total_count=len(keys),
            has_more=has_more,
            next_token=str(next_offset) if has_more else None,
        )

    def _signature_message(self, key: str, operation: str, expires: int) -> str:
        return f"{operation}:{key}:{expires}"

    def generate_presigned_url(self, key: str, operation: str = "get", expires_in: int = 3600) -> str:
        self.require_connection()
        file_path = self._get_path(key)
        expires = int(time.time()) + expires_in
        signature = sign_token(self._presign_secret, self._signature_message(key, operation, expires))
        query = urlencode({"operation": operation, "expires": expires, "signature": signature})
        return f"{file_path.as_uri()}?{query}"

    def verify_presigned_url(self, url: str, now: Optional[float] = None) -> bool:
        """True when the URL was signed by this adapter and has not expired."""
        parsed = urlparse(url)
        params = {name: values[0] for name, values in parse_qs(parsed.query).items()}
        try:
            expires = int(params["expires"])
            operation = params["operation"]
            signature = params["signature"]
        except (KeyError, ValueError):
            return False
        if (now if now is not None else time.time()) > expires:
            return False
        try:
            key = Path(parsed.path).resolve().relative_to(self._base_path.resolve()).as_posix()
        except ValueError:
            return False
        return verify_token(self._presign_secret, self._signature_message(key, operation, expires), signature)

    def copy(self, source_key: str, destination_key: str, options: Optional[UploadOptions] = None) -> UploadResult:
        self.require_connection()
        source_path = self._get_path(source_key)
        if not source_path.is_file():
            raise ObjectNotFoundError(source_key)
        destination_path = self._get_path(destination_key)
        if options is not None and not options.overwrite and destination_path.exists():
            raise StorageError(f"Object already exists: {destination_key}", code="AlreadyExists")

        record = self._load_record(source_key)
        record["key"] = destination_key
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, destination_path)
        self._write_atomic(
            self._get_metadata_path(destination_key), json.dumps(record, indent=2).encode("utf-8")
        )

        descriptor = self._describe(destination_key, destination_path)
        return UploadResult(
            key=destination_key,
            location=destination_path.as_uri(),
            etag=descriptor.etag,
            size=descriptor.size,
            stored_size=destination_path.stat().st_size,
            content_type=descriptor.content_type,
            metadata=descriptor.metadata,
        )
