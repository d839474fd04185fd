"""Factory classes for creating configured service instances."""

from typing import Any, Dict, Optional

from .config import (
    ArchiveOptions,
    AudioOptions,
    DocumentOptions,
    ImageOptions,
    PipelineSettings,
    VideoOptions,
    get_settings,
)
from .ingestion import MediaIngestionService
from .models import ProcessorType
from .protocols import DedupLockService, EventNotifier, LoggerProtocol, MediaToolkit, MetadataStore
from .routing import ContentTypeRouter
from .services import ProcessingOrchestrator


class ProcessorFactory:
    """Factory for creating the five specialized processors."""

    @staticmethod
    def create_processors(
        toolkit: Optional[MediaToolkit] = None,
        settings: Optional[PipelineSettings] = None,
        image_options: Optional[ImageOptions] = None,
        video_options: Optional[VideoOptions] = None,
        audio_options: Optional[AudioOptions] = None,
        document_options: Optional[DocumentOptions] = None,
        archive_options: Optional[ArchiveOptions] = None,
    ) -> Dict[ProcessorType, Any]:
        from ..processors import (
            ArchiveProcessor,
            AudioProcessor,
            DocumentProcessor,
            FFmpegToolkit,
            ImageProcessor,
            VideoProcessor,
        )

        if toolkit is None:
            settings = settings or get_settings()
            toolkit = FFmpegToolkit(
                ffmpeg_path=settings.ffmpeg_path,
                ffprobe_path=settings.ffprobe_path,
                timeout=settings.processing_timeout,
            )

        return {
            ProcessorType.IMAGE: ImageProcessor(image_options),
            ProcessorType.VIDEO: VideoProcessor(video_options, toolkit),
            ProcessorType.AUDIO: AudioProcessor(audio_options, toolkit),
            ProcessorType.DOCUMENT: DocumentProcessor(document_options),
            ProcessorType.ARCHIVE: ArchiveProcessor(archive_options),
        }


class ProcessingPipelineFactory:
    """Factory for creating the complete processing pipeline."""

    @staticmethod
    def create_orchestrator(
        settings: Optional[PipelineSettings] = None,
        toolkit: Optional[MediaToolkit] = None,
        notifier: Optional[EventNotifier] = None,
        logger: Optional[LoggerProtocol] = None,
        **processor_options: Any,
    ) -> ProcessingOrchestrator:
        """Create a fully configured orchestrator."""
        settings = settings or get_settings()
        processors = ProcessorFactory.create_processors(toolkit, settings, **processor_options)
        return ProcessingOrchestrator(
            ContentTypeRouter(processors),
            options=settings.orchestrator_options(),
            notifier=notifier,
            logger=logger,
        )

    @staticmethod
    def create_ingestion_service(
        settings: Optional[PipelineSettings] = None,
        toolkit: Optional[MediaToolkit] = None,
        notifier: Optional[EventNotifier] = None,
        metadata_store: Optional[MetadataStore] = None,
        lock_service: Optional[DedupLockService] = None,
        storage_manager: Any = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> MediaIngestionService:
        """Orchestrator plus storage manager, wired to the given collaborators."""
        from ..storage import create_storage_manager

        settings = settings or get_settings()
        orchestrator = ProcessingPipelineFactory.create_orchestrator(settings, toolkit, notifier, logger)
        if storage_manager is None:
            storage_manager = create_storage_manager(settings, notifier)
        return MediaIngestionService(
            orchestrator,
            storage_manager,
            metadata_store=metadata_store,
            lock_service=lock_service,
            notifier=notifier,
        )
