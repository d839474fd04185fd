"""Content-type routing: (MIME type, file name) -> processor."""

from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from .exceptions import UnsupportedTypeError
from .models import ProcessorType

if TYPE_CHECKING:
    from ..processors.base import Processor

MIME_TYPE_ROUTES: Dict[str, ProcessorType] = {
    # images
    "image/jpeg": ProcessorType.IMAGE,
    "image/jpg": ProcessorType.IMAGE,
    "image/png": ProcessorType.IMAGE,
    "image/gif": ProcessorType.IMAGE,
    "image/webp": ProcessorType.IMAGE,
    "image/svg+xml": ProcessorType.IMAGE,
    "image/bmp": ProcessorType.IMAGE,
    "image/tiff": ProcessorType.IMAGE,
    # video
    "video/mp4": ProcessorType.VIDEO,
    "video/webm": ProcessorType.VIDEO,
    "video/ogg": ProcessorType.VIDEO,
    "video/avi": ProcessorType.VIDEO,
    "video/x-msvideo": ProcessorType.VIDEO,
    "video/mov": ProcessorType.VIDEO,
    "video/quicktime": ProcessorType.VIDEO,
    "video/x-matroska": ProcessorType.VIDEO,
    "video/mpeg": ProcessorType.VIDEO,
    # audio
    "audio/mpeg": ProcessorType.AUDIO,
    "audio/mp3": ProcessorType.AUDIO,
    "audio/wav": ProcessorType.AUDIO,
    "audio/x-wav": ProcessorType.AUDIO,
    "audio/ogg": ProcessorType.AUDIO,
    "audio/aac": ProcessorType.AUDIO,
    "audio/flac": ProcessorType.AUDIO,
    "audio/webm": ProcessorType.AUDIO,
    "audio/mp4": ProcessorType.AUDIO,
    # documents
    "application/pdf": ProcessorType.DOCUMENT,
    "application/msword": ProcessorType.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ProcessorType.DOCUMENT,
    "application/vnd.ms-excel": ProcessorType.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ProcessorType.DOCUMENT,
    "application/vnd.ms-powerpoint": ProcessorType.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ProcessorType.DOCUMENT,
    "text/plain": ProcessorType.DOCUMENT,
    "text/csv": ProcessorType.DOCUMENT,
    "text/html": ProcessorType.DOCUMENT,
    "text/markdown": ProcessorType.DOCUMENT,
    "application/json": ProcessorType.DOCUMENT,
    "application/xml": ProcessorType.DOCUMENT,
    "text/xml": ProcessorType.DOCUMENT,
    # archives
    "application/zip": ProcessorType.ARCHIVE,
    "application/x-zip-compressed": ProcessorType.ARCHIVE,
    "application/x-tar": ProcessorType.ARCHIVE,
    "application/gzip": ProcessorType.ARCHIVE,
    "application/x-gzip": ProcessorType.ARCHIVE,
    "application/x-bzip2": ProcessorType.ARCHIVE,
    "application/vnd.rar": ProcessorType.ARCHIVE,
    "application/x-rar-compressed": ProcessorType.ARCHIVE,
    "application/x-7z-compressed": ProcessorType.ARCHIVE,
}

# Predicate fallback order.
FALLBACK_ORDER = (
    ProcessorType.IMAGE,
    ProcessorType.VIDEO,
    ProcessorType.AUDIO,
    ProcessorType.DOCUMENT,
    ProcessorType.ARCHIVE,
)


class ContentTypeRouter:
    """
    Picks exactly one processor for a MIME type / file name pair.

    The explicit MIME table wins; otherwise each registered processor's
    ``supports`` predicate is asked in a fixed order. The same inputs always
    yield the same processor.
    """

    def __init__(self, processors: Mapping[ProcessorType, "Processor"]):
        self._processors = dict(processors)

    @property
    def processors(self) -> Dict[ProcessorType, "Processor"]:
        return dict(self._processors)

    def get(self, processor_type: ProcessorType) -> Optional["Processor"]:
        return self._processors.get(processor_type)

    def resolve_type(self, mime_type: str, file_name: str = "") -> ProcessorType:
        normalized = (mime_type or "").lower().split(";")[0].strip()
        routed = MIME_TYPE_ROUTES.get(normalized)
        if routed is not None and routed in self._processors:
            return routed

        for processor_type in FALLBACK_ORDER:
            processor = self._processors.get(processor_type)
            if processor is not None and processor.supports(normalized, file_name):
                return processor_type

        raise UnsupportedTypeError(mime_type, file_name)

    def route(self, mime_type: str, file_name: str = "") -> "Processor":
        """Processor for the pair; raises UnsupportedTypeError when none claims it."""
        return self._processors[self.resolve_type(mime_type, file_name)]

    def supported_types(self) -> List[str]:
        return sorted(
            mime for mime, processor_type in MIME_TYPE_ROUTES.items()
            if processor_type in self._processors
        )
