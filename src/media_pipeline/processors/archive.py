"""Archive processor: manifest, guarded extraction and archive creation."""

import io
import json
import posixpath
import re
import stat
import tarfile
import time
import zipfile
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from ..core.config import ArchiveOptions
from ..core.exceptions import (
    ArchiveLimitExceededError,
    NotImplementedFormatError,
    SecurityError,
    ValidationError,
)
from ..core.mime import detect_magic_type, get_extension
from ..core.models import (
    ArchiveCreationResult,
    ArchiveEntry,
    ArtifactType,
    DerivedArtifact,
    ExtractedFile,
    ProcessOptions,
    ProcessorOutput,
    ProcessorType,
)
from .base import Processor

ZIP = "zip"
TAR = "tar"
TAR_GZ = "tar.gz"
TAR_BZ2 = "tar.bz2"
RAR = "rar"
SEVEN_ZIP = "7z"

SUPPORTED_TYPES = (ZIP, TAR, TAR_GZ)
UNSUPPORTED_TYPES = (TAR_BZ2, RAR, SEVEN_ZIP)

# Raised while reading a corrupt member; only that entry is skipped.
UNREADABLE_ENTRY_ERRORS = (zipfile.BadZipFile, zlib.error, tarfile.TarError, OSError, EOFError)

MIME_ARCHIVE_TYPES = {
    "application/zip": ZIP,
    "application/x-zip-compressed": ZIP,
    "application/x-tar": TAR,
    "application/gzip": TAR_GZ,
    "application/x-gzip": TAR_GZ,
    "application/x-gtar": TAR_GZ,
    "application/x-bzip2": TAR_BZ2,
    "application/vnd.rar": RAR,
    "application/x-rar-compressed": RAR,
    "application/x-7z-compressed": SEVEN_ZIP,
}

EXTENSION_ARCHIVE_TYPES = {
    ".zip": ZIP,
    ".tar": TAR,
    ".tar.gz": TAR_GZ,
    ".tgz": TAR_GZ,
    ".gz": TAR_GZ,
    ".tar.bz2": TAR_BZ2,
    ".tbz2": TAR_BZ2,
    ".bz2": TAR_BZ2,
    ".rar": RAR,
    ".7z": SEVEN_ZIP,
}

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_VIRTUAL_ROOT = "/__extract_root__"


def detect_archive_type(mime_type: str = "", file_name: str = "", data: Optional[bytes] = None) -> Optional[str]:
    """Archive type from MIME type, then (compound) extension, then signature."""
    archive_type = MIME_ARCHIVE_TYPES.get((mime_type or "").lower())
    if archive_type:
        return archive_type
    if file_name.lower().endswith(".tbz2"):
        return TAR_BZ2
    archive_type = EXTENSION_ARCHIVE_TYPES.get(get_extension(file_name))
    if archive_type:
        return archive_type
    if data:
        sniffed = detect_magic_type(data)
        return MIME_ARCHIVE_TYPES.get(sniffed) if sniffed else None
    return None


def unsafe_path_reason(path: str) -> Optional[str]:
    """
    Why an entry path would escape the extraction root, or None if it is safe.

    Rejects parent-directory segments, absolute POSIX paths, drive letters,
    UNC and backslash-rooted paths, and anything that normalizes outside the
    root.
    """
    if not path or "\x00" in path:
        return "empty or NUL-containing path"
    if _DRIVE_LETTER.match(path):
        return "drive letter in path"
    if path.startswith(("/", "\\")):
        return "absolute path"
    normalized = path.replace("\\", "/")
    if ".." in normalized.split("/"):
        return "parent directory reference"
    resolved = posixpath.normpath(posixpath.join(_VIRTUAL_ROOT, normalized))
    if not resolved.startswith(_VIRTUAL_ROOT + "/"):
        return "path escapes extraction root"
    return None


def is_safe_path(path: str) -> bool:
    return unsafe_path_reason(path) is None


def _zip_timestamp(info: zipfile.ZipInfo) -> Optional[datetime]:
    try:
        return datetime(*info.date_time, tzinfo=timezone.utc)
    except ValueError:
        return None


@dataclass
class _Member:
    """An enumerated entry plus the callable that reads at most N bytes of it."""

    entry: ArchiveEntry
    read: Callable[[int], bytes]
    special: bool = False
    encrypted: bool = False


class ArchiveProcessor(Processor):
    """Enumerate first, then extract whatever passes every guard."""

    processor_type = ProcessorType.ARCHIVE

    def __init__(self, options: Optional[ArchiveOptions] = None):
        self.options = options or ArchiveOptions()
        super().__init__()

    def supports(self, mime_type: str, file_name: str = "") -> bool:
        return detect_archive_type(mime_type, file_name) is not None

    def validate(self, data: bytes, options: ProcessOptions) -> None:
        self.check_size(data, self.options.max_file_size, "Archive")
        archive_type = detect_archive_type(options.mime_type, options.file_name, data)
        if archive_type is None:
            raise ValidationError("Unrecognized archive format", field="mime_type")
        if archive_type in UNSUPPORTED_TYPES:
            raise NotImplementedFormatError(archive_type)

    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        archive_type = detect_archive_type(options.mime_type, options.file_name, data)
        should_extract = bool(options.params.get("extract", self.options.extract))

        with self._open(data, archive_type) as members:
            entries = [member.entry for member in members]
            self._check_archive_limits(entries)
            extracted = self._extract_members(members) if should_extract else []

        metadata = self._summarize(archive_type, entries, extracted)
        artifacts = [
            DerivedArtifact(
                artifact_type=ArtifactType.MANIFEST,
                data=json.dumps([entry.model_dump(mode="json") for entry in entries], indent=2).encode("utf-8"),
                format="json",
                label="manifest",
                extra={"entries": len(entries)},
            )
        ]
        for item in extracted:
            artifacts.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.EXTRACTED,
                    data=item.data,
                    format=get_extension(item.path).lstrip("."),
                    label=item.path,
                    extra={"path": item.path},
                )
            )

        self.logger.debug(
            f"Processed {archive_type} archive {options.file_name}: "
            f"{len(entries)} entries, {len(extracted)} extracted"
        )
        return ProcessorOutput(metadata=metadata, artifacts=artifacts)

    def list_entries(self, data: bytes, file_name: str = "", mime_type: str = "") -> List[ArchiveEntry]:
        """Manifest only, no extraction."""
        archive_type = self._require_supported(mime_type, file_name, data)
        with self._open(data, archive_type) as members:
            return [member.entry for member in members]

    def extract(self, data: bytes, file_name: str = "", mime_type: str = "") -> Tuple[List[ArchiveEntry], List[ExtractedFile]]:
        """Guarded in-memory extraction. Returns the manifest and the files."""
        archive_type = self._require_supported(mime_type, file_name, data)
        with self._open(data, archive_type) as members:
            entries = [member.entry for member in members]
            self._check_archive_limits(entries)
            return entries, self._extract_members(members)

    def extract_to(self, data: bytes, destination: Path, file_name: str = "", mime_type: str = "") -> List[ArchiveEntry]:
        """Extract to disk, re-checking every resolved path against the root."""
        root = Path(destination).resolve()
        entries, files = self.extract(data, file_name, mime_type)
        for item in files:
            target = (root / item.path).resolve()
            if not target.is_relative_to(root):
                raise SecurityError(f"Path traversal detected: {item.path}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(item.data)
        return entries

    def _require_supported(self, mime_type: str, file_name: str, data: bytes) -> str:
        archive_type = detect_archive_type(mime_type, file_name, data)
        if archive_type is None:
            raise ValidationError("Unrecognized archive format", field="mime_type")
        if archive_type in UNSUPPORTED_TYPES:
            raise NotImplementedFormatError(archive_type)
        return archive_type

    def _check_archive_limits(self, entries: List[ArchiveEntry]) -> None:
        if len(entries) > self.options.max_files:
            raise ArchiveLimitExceededError(
                f"Archive has {len(entries)} entries, maximum is {self.options.max_files}"
            )
        projected = sum(entry.size for entry in entries if not entry.is_directory)
        if projected > self.options.max_total_size:
            raise ArchiveLimitExceededError(
                f"Archive expands to {projected} bytes, maximum is {self.options.max_total_size}"
            )

    def _skip_reason(self, member: _Member) -> Optional[str]:
        entry = member.entry
        if entry.is_directory:
            return "directory"
        if entry.is_symlink or member.special:
            return "unsupported entry type"
        if member.encrypted:
            return "encrypted entry"
        reason = unsafe_path_reason(entry.path)
        if reason:
            return f"unsafe path: {reason}"
        depth = len([part for part in entry.path.replace("\\", "/").split("/") if part])
        if depth > self.options.max_depth:
            return f"path depth {depth} exceeds {self.options.max_depth}"
        if entry.size > self.options.max_entry_size:
            return f"entry size {entry.size} exceeds {self.options.max_entry_size}"
        allowed = self.options.allowed_extensions
        if allowed is not None and get_extension(entry.path) not in allowed:
            return "extension not allowed"
        return None

    def _extract_members(self, members: List[_Member]) -> List[ExtractedFile]:
        extracted: List[ExtractedFile] = []
        total = 0
        for member in members:
            entry = member.entry
            reason = self._skip_reason(member)
            if reason:
                if not entry.is_directory:
                    self.logger.warning(f"Skipping archive entry {entry.path!r}: {reason}")
                entry.skipped_reason = reason
                continue

            # Header sizes can lie; the cap applies to bytes actually read.
            try:
                payload = member.read(self.options.max_entry_size + 1)
            except UNREADABLE_ENTRY_ERRORS as exc:
                entry.skipped_reason = f"unreadable entry: {exc}"
                self.logger.warning(f"Skipping archive entry {entry.path!r}: {entry.skipped_reason}")
                continue
            if len(payload) > self.options.max_entry_size:
                entry.skipped_reason = f"entry size exceeds {self.options.max_entry_size}"
                self.logger.warning(f"Skipping archive entry {entry.path!r}: {entry.skipped_reason}")
                continue
            total += len(payload)
            if total > self.options.max_total_size:
                raise ArchiveLimitExceededError(
                    f"Extracted data exceeds {self.options.max_total_size} bytes"
                )

            entry.extracted = True
            extracted.append(ExtractedFile(path=entry.path.replace("\\", "/"), data=payload))
        return extracted

    def _summarize(self, archive_type: str, entries: List[ArchiveEntry], extracted: List[ExtractedFile]) -> dict:
        files = [entry for entry in entries if not entry.is_directory]
        uncompressed = sum(entry.size for entry in files)
        compressed = sum(entry.compressed_size for entry in files)
        return {
            "archive_type": archive_type,
            "total_entries": len(entries),
            "total_files": len(files),
            "total_directories": len(entries) - len(files),
            "total_uncompressed_size": uncompressed,
            "total_compressed_size": compressed,
            "compression_ratio": round(1 - compressed / uncompressed, 4) if uncompressed and compressed else 0.0,
            "extracted_count": len(extracted),
            "skipped_count": sum(1 for entry in files if entry.skipped_reason),
        }

    def _open(self, data: bytes, archive_type: str) -> "_OpenArchive":
        return _OpenArchive(data, archive_type)

    def create_archive(self, files: List[ExtractedFile], archive_type: str = ZIP) -> ArchiveCreationResult:
        """Build a zip, tar or tar.gz from in-memory files."""
        if archive_type in UNSUPPORTED_TYPES:
            raise NotImplementedFormatError(archive_type)
        if archive_type not in SUPPORTED_TYPES:
            raise ValidationError(f"Unknown archive type: {archive_type}", field="archive_type")
        if not files:
            raise ValidationError("No files to archive", field="files")
        for item in files:
            reason = unsafe_path_reason(item.path)
            if reason:
                raise SecurityError(f"Refusing to archive {item.path!r}: {reason}")

        buffer = io.BytesIO()
        level = self.options.compression_level
        if archive_type == ZIP:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=level) as archive:
                for item in files:
                    archive.writestr(item.path, item.data)
        else:
            mode = "w:gz" if archive_type == TAR_GZ else "w"
            kwargs = {"compresslevel": level} if archive_type == TAR_GZ else {}
            with tarfile.open(fileobj=buffer, mode=mode, **kwargs) as archive:
                now = time.time()
                for item in files:
                    info = tarfile.TarInfo(name=item.path)
                    info.size = len(item.data)
                    info.mtime = now
                    archive.addfile(info, io.BytesIO(item.data))

        payload = buffer.getvalue()
        uncompressed = sum(len(item.data) for item in files)
        return ArchiveCreationResult(
            data=payload,
            size=len(payload),
            archive_type=archive_type,
            files_count=len(files),
            uncompressed_size=uncompressed,
            compression_ratio=round(1 - len(payload) / uncompressed, 4) if uncompressed else 0.0,
        )


class _OpenArchive:
    """Context manager yielding enumerated members of a zip or tar payload."""

    def __init__(self, data: bytes, archive_type: str):
        self._data = data
        self._archive_type = archive_type
        self._handle = None

    def __enter__(self) -> List[_Member]:
        if self._archive_type == ZIP:
            try:
                self._handle = zipfile.ZipFile(io.BytesIO(self._data))
            except zipfile.BadZipFile as exc:
                raise ValidationError(f"Invalid zip archive: {exc}", field="data") from exc
            return list(self._zip_members(self._handle))

        mode = "r:gz" if self._archive_type == TAR_GZ else "r:"
        try:
            self._handle = tarfile.open(fileobj=io.BytesIO(self._data), mode=mode)
            return list(self._tar_members(self._handle))
        except (tarfile.TarError, EOFError, OSError) as exc:
            if self._handle is not None:
                self._handle.close()
            raise ValidationError(f"Invalid {self._archive_type} archive: {exc}", field="data") from exc

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._handle is not None:
            self._handle.close()
        return False

    @staticmethod
    def _zip_members(archive: zipfile.ZipFile) -> Iterator[_Member]:
        for info in archive.infolist():
            mode = info.external_attr >> 16
            is_symlink = stat.S_ISLNK(mode)
            is_dir = info.is_dir()
            entry = ArchiveEntry(
                path=info.filename,
                size=info.file_size,
                compressed_size=info.compress_size,
                is_directory=is_dir,
                is_file=not is_dir and not is_symlink,
                is_symlink=is_symlink,
                last_modified=_zip_timestamp(info),
            )

            def read(limit: int, info: zipfile.ZipInfo = info) -> bytes:
                with archive.open(info) as handle:
                    return handle.read(limit)

            yield _Member(entry=entry, read=read, encrypted=bool(info.flag_bits & 0x1))

    @staticmethod
    def _tar_members(archive: tarfile.TarFile) -> Iterator[_Member]:
        for info in archive.getmembers():
            is_link = info.issym() or info.islnk()
            entry = ArchiveEntry(
                path=info.name,
                size=info.size,
                compressed_size=info.size,
                is_directory=info.isdir(),
                is_file=info.isfile(),
                is_symlink=is_link,
                last_modified=datetime.fromtimestamp(info.mtime, tz=timezone.utc),
            )

            def read(limit: int, info: tarfile.TarInfo = info) -> bytes:
                handle = archive.extractfile(info)
                if handle is None:
                    return b""
                with handle:
                    return handle.read(limit)

            special = not (info.isfile() or info.isdir() or is_link)
            yield _Member(entry=entry, read=read, special=special)
