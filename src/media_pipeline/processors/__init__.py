"""Type-specific processors: image, video, audio, document and archive."""

from .archive import ArchiveProcessor
from .audio import AudioProcessor
from .base import Processor
from .document import DocumentProcessor
from .image import ImageProcessor
from .media_toolkit import FFmpegToolkit
from .video import VideoProcessor

__all__ = [
    "Processor",
    "ImageProcessor",
    "VideoProcessor",
    "AudioProcessor",
    "DocumentProcessor",
    "ArchiveProcessor",
    "FFmpegToolkit",
]
