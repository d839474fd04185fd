"""Integration layer: process a payload and persist the original plus artifacts."""

import time
from typing import Any, Dict, List, Optional

from .collaborators import NullDedupLock, NullEventNotifier, NullMetadataStore, safe_emit
from .crypto import compute_content_hash
from .keys import derived_key, generate_storage_key
from .logging_config import get_logger
from .models import (
    DerivedArtifact,
    FileInfo,
    IngestionResult,
    StorageObject,
    UploadOptions,
)
from .protocols import DedupLockService, EventNotifier, MetadataStore, PipelineEvent
from .services import ProcessingOrchestrator

ARTIFACT_CONTENT_TYPES = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "wav": "audio/wav",
    "json": "application/json",
    "txt": "text/plain",
}


def artifact_label(artifact: DerivedArtifact, index: int) -> str:
    """Unique, readable name for an artifact within one ingestion."""
    base = artifact.label or artifact.artifact_type.value
    suffix = f".{artifact.format}" if artifact.format else ""
    if suffix and base.lower().endswith(suffix.lower()):
        base = base[: -len(suffix)]
    return f"{index:03d}_{base}"


class MediaIngestionService:
    """
    Dedup lock, processing and persistence for one uploaded file.

    A content-hash lock keeps two concurrent uploads of identical bytes from
    being processed twice; the second caller gets ``duplicate=True`` back.
    """

    def __init__(
        self,
        orchestrator: ProcessingOrchestrator,
        storage_manager,
        metadata_store: Optional[MetadataStore] = None,
        lock_service: Optional[DedupLockService] = None,
        notifier: Optional[EventNotifier] = None,
        lock_ttl: float = 300.0,
        store_artifacts: bool = True,
    ):
        self.orchestrator = orchestrator
        self.storage_manager = storage_manager
        self.metadata_store = metadata_store or NullMetadataStore()
        self.lock_service = lock_service or NullDedupLock()
        self.notifier = notifier or NullEventNotifier()
        self.lock_ttl = lock_ttl
        self.store_artifacts = store_artifacts
        self.logger = get_logger("ingestion")

    def ingest(
        self,
        data: bytes,
        file_info: FileInfo,
        params: Optional[Dict[str, Any]] = None,
        upload_options: Optional[UploadOptions] = None,
    ) -> IngestionResult:
        content_hash = compute_content_hash(data)
        grant = self.lock_service.acquire(content_hash, self.lock_ttl)
        if not grant.acquired:
            self.logger.info(f"Duplicate upload skipped for {file_info.file_name} ({content_hash[:12]})")
            safe_emit(
                self.notifier,
                PipelineEvent.DUPLICATE_UPLOAD_SKIPPED,
                {"file_name": file_info.file_name, "content_hash": content_hash},
                self.logger,
            )
            return IngestionResult(duplicate=True, content_hash=content_hash)

        try:
            return self._ingest(data, file_info, content_hash, params, upload_options)
        finally:
            if not self.lock_service.release(content_hash, grant.token or ""):
                self.logger.warning(f"Dedup lock for {content_hash[:12]} expired before release")

    def _ingest(
        self,
        data: bytes,
        file_info: FileInfo,
        content_hash: str,
        params: Optional[Dict[str, Any]],
        upload_options: Optional[UploadOptions],
    ) -> IngestionResult:
        start = time.perf_counter()
        processing = self.orchestrator.process_file(data, file_info, params)

        options = (upload_options or UploadOptions()).model_copy()
        options.content_type = options.content_type or file_info.mime_type
        options.metadata = {
            **options.metadata,
            "process-id": processing.process_id,
            "processor-type": processing.processor_type.value,
            "original-name": file_info.file_name,
        }
        key = generate_storage_key(file_info.file_name, prefix=self.storage_manager.options.key_prefix)
        original = self.storage_manager.upload(data, file_info.file_name, options, key=key)

        derived: List[StorageObject] = []
        try:
            if self.store_artifacts:
                for index, artifact in enumerate(processing.artifacts):
                    if not artifact.data:
                        continue
                    derived.append(self._store_artifact(original.key, artifact, index, upload_options))
        except Exception:
            self._discard([original, *derived])
            raise

        self.metadata_store.save(original.key, [original, *derived])
        safe_emit(
            self.notifier,
            PipelineEvent.FILE_STORED,
            {
                "key": original.key,
                "process_id": processing.process_id,
                "provider": original.provider,
                "size": original.size,
                "content_hash": content_hash,
                "derived_count": len(derived),
            },
            self.logger,
        )
        self.logger.info(
            f"Ingested {file_info.file_name} as {original.key} with {len(derived)} derived object(s) "
            f"in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return IngestionResult(
            processing=processing,
            original=original,
            derived=derived,
            content_hash=content_hash,
        )

    def _discard(self, stored: List[StorageObject]) -> None:
        """Delete objects written by a failed ingestion."""
        for obj in stored:
            try:
                self.storage_manager.delete(obj.key)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"Failed to clean up {obj.key} after a failed ingestion: {exc}")

    def _store_artifact(
        self,
        original_key: str,
        artifact: DerivedArtifact,
        index: int,
        upload_options: Optional[UploadOptions],
    ) -> StorageObject:
        extension = artifact.format.lower()
        key = derived_key(original_key, artifact_label(artifact, index), extension)
        options = UploadOptions(
            content_type=ARTIFACT_CONTENT_TYPES.get(extension, "application/octet-stream"),
            metadata={
                "process-id": artifact.process_id,
                "artifact-type": artifact.artifact_type.value,
                "parent-key": original_key,
            },
            compress=upload_options.compress if upload_options else None,
            encrypt=upload_options.encrypt if upload_options else None,
        )
        return self.storage_manager.upload(artifact.data, key.rsplit("/", 1)[-1], options, key=key)
