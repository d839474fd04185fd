"""Storage key generation and upload validation."""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Iterable, Optional

from .exceptions import ValidationError

MAX_FILE_NAME_LENGTH = 255
DANGEROUS_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_file_name(file_name: str) -> str:
    """Replace unsafe characters and whitespace with ``_`` and lower-case."""
    cleaned = DANGEROUS_CHARS.sub("_", file_name)
    cleaned = _WHITESPACE.sub("_", cleaned)
    cleaned = cleaned.strip(".") or "file"
    return cleaned.lower()[:MAX_FILE_NAME_LENGTH]


def random_token(length: int = 8) -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def generate_storage_key(
    file_name: str,
    prefix: str = "uploads",
    now: Optional[datetime] = None,
) -> str:
    """
    Build ``prefix/YYYY/MM/DD/{epoch_ms}_{random}_{sanitized_name}``.

    The random component keeps two calls for the same name within the same
    millisecond apart.
    """
    now = now or datetime.now(timezone.utc)
    timestamp = int(now.timestamp() * 1000)
    parts = [
        prefix.strip("/"),
        f"{now.year:04d}",
        f"{now.month:02d}",
        f"{now.day:02d}",
        f"{timestamp}_{random_token()}_{sanitize_file_name(file_name)}",
    ]
    return "/".join(part for part in parts if part)


def derived_key(original_key: str, artifact_label: str, extension: str) -> str:
    """Key of a derived artifact stored next to its original."""
    extension = extension.lstrip(".")
    label = sanitize_file_name(artifact_label)
    suffix = f".{extension}" if extension else ""
    return f"{original_key}.derived/{label}{suffix}"


def validate_file(
    data: bytes,
    file_name: str,
    mime_type: Optional[str] = None,
    max_file_size: Optional[int] = None,
    allowed_mime_types: Optional[Iterable[str]] = None,
) -> None:
    """
    Reject payloads that must never reach a backend.

    Raises:
        ValidationError: empty payload, oversize payload, disallowed MIME type,
            missing, overlong or unsafe file name.
    """
    if not file_name:
        raise ValidationError("File name is required", field="file_name")
    if len(file_name) > MAX_FILE_NAME_LENGTH:
        raise ValidationError(
            f"File name exceeds {MAX_FILE_NAME_LENGTH} characters", field="file_name"
        )
    if DANGEROUS_CHARS.search(file_name):
        raise ValidationError("File name contains invalid characters", field="file_name")
    if not data:
        raise ValidationError("File is empty", field="size")
    if max_file_size is not None and len(data) > max_file_size:
        raise ValidationError(
            f"File size {len(data)} exceeds maximum allowed size {max_file_size}",
            field="size",
        )
    if allowed_mime_types is not None and mime_type not in set(allowed_mime_types):
        raise ValidationError(f"File type {mime_type} is not allowed", field="mime_type")
