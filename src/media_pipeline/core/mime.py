"""MIME type detection from file names and leading bytes."""

import mimetypes
import os
from typing import Optional

DEFAULT_MIME_TYPE = "application/octet-stream"

EXTENSION_MIME_TYPES = {
    # images
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    # video
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".mpeg": "video/mpeg",
    # audio
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".aac": "audio/aac",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    # documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".xml": "application/xml",
    # archives
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".tgz": "application/gzip",
    ".bz2": "application/x-bzip2",
    ".rar": "application/vnd.rar",
    ".7z": "application/x-7z-compressed",
}

COMPOUND_EXTENSIONS = (".tar.gz", ".tar.bz2")

ZIP_CONTAINER_TYPES = frozenset(
    {
        EXTENSION_MIME_TYPES[".docx"],
        EXTENSION_MIME_TYPES[".xlsx"],
        EXTENSION_MIME_TYPES[".pptx"],
    }
)

# (offset, signature, mime type); checked in order.
MAGIC_SIGNATURES = (
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"%PDF", "application/pdf"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"\x1f\x8b", "application/gzip"),
    (0, b"BZh", "application/x-bzip2"),
    (0, b"Rar!\x1a\x07", "application/vnd.rar"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"fLaC", "audio/flac"),
    (0, b"OggS", "audio/ogg"),
    (0, b"\x1a\x45\xdf\xa3", "video/webm"),
    (257, b"ustar", "application/x-tar"),
)


def get_extension(file_name: str) -> str:
    """Lower-case extension, compound ones (``.tar.gz``) included."""
    lowered = file_name.lower()
    for compound in COMPOUND_EXTENSIONS:
        if lowered.endswith(compound):
            return compound
    return os.path.splitext(lowered)[1]


def detect_magic_type(data: bytes) -> Optional[str]:
    """MIME type implied by the payload's signature bytes, if recognized."""
    for offset, signature, mime in MAGIC_SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return mime
    if data[4:8] == b"ftyp":
        return "video/mp4"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "audio/wav"
    return None


def mime_from_extension(file_name: str) -> Optional[str]:
    ext = get_extension(file_name)
    if ext == ".tar.gz":
        return "application/gzip"
    if ext == ".tar.bz2":
        return "application/x-bzip2"
    if ext in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed


def detect_mime_type(file_name: str, data: Optional[bytes] = None) -> str:
    """
    Detect a MIME type from the file name, overridden by magic bytes.

    Zip-based office documents keep their extension-derived type since their
    container signature is plain zip.
    """
    by_extension = mime_from_extension(file_name)
    sniffed = detect_magic_type(data) if data else None

    if sniffed is None:
        return by_extension or DEFAULT_MIME_TYPE
    if sniffed == "application/zip" and by_extension in ZIP_CONTAINER_TYPES:
        return by_extension
    return sniffed
