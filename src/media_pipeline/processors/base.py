"""Common contract and helpers shared by every processor."""

import io
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from PIL import Image, ImageDraw

from ..core.exceptions import ValidationError
from ..core.logging_config import get_logger
from ..core.models import ProcessOptions, ProcessorOutput, ProcessorType
from ..core.observability import OperationCounters


class Processor(ABC):
    """
    A type-specific transformation stage.

    ``validate`` must raise before any expensive work is done; ``process``
    assumes a validated payload and returns metadata plus derived artifacts.
    """

    processor_type: ProcessorType

    def __init__(self):
        self.logger = get_logger(f"processor.{self.processor_type.value}")
        self._counters = OperationCounters()

    @abstractmethod
    def supports(self, mime_type: str, file_name: str = "") -> bool:
        """Whether this processor claims the MIME type / file name pair."""

    @abstractmethod
    def validate(self, data: bytes, options: ProcessOptions) -> None:
        """Raise ValidationError if the payload must not be processed."""

    @abstractmethod
    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        """Type-specific transformation."""

    def process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        """Run the transformation and record metrics."""
        start = time.perf_counter()
        success = False
        try:
            output = self._process(data, options)
            for artifact in output.artifacts:
                artifact.process_id = options.process_id
            success = True
            return output
        finally:
            self._counters.record(
                "process",
                duration=time.perf_counter() - start,
                size=len(data),
                success=success,
            )

    def get_metrics(self) -> Dict[str, Any]:
        stats = self._counters.get("process")
        return {
            "processor_type": self.processor_type.value,
            "processed": stats.count,
            "succeeded": stats.count - stats.errors,
            "failed": stats.errors,
            "total_bytes": stats.total_size,
            "total_duration": stats.total_duration,
            "avg_duration": stats.avg_duration,
        }

    @staticmethod
    def check_size(data: bytes, max_file_size: int, label: str = "File") -> None:
        """Shared size policy: no empty payloads and nothing above the cap."""
        if not data:
            raise ValidationError(f"{label} is empty", field="size")
        if len(data) > max_file_size:
            raise ValidationError(
                f"{label} size {len(data)} exceeds maximum allowed size {max_file_size}",
                field="size",
            )


def render_placeholder(
    size: tuple,
    label: str,
    background: tuple = (236, 240, 241),
    foreground: tuple = (52, 73, 94),
    subtitle: Optional[str] = None,
) -> bytes:
    """A flat PNG with a centred label, used when no real rendering exists."""
    image = Image.new("RGB", size, background)
    draw = ImageDraw.Draw(image)
    width, height = size
    draw.rectangle([(4, 4), (width - 5, height - 5)], outline=foreground, width=2)
    _draw_centered(draw, label, (width // 2, height // 2), foreground)
    if subtitle:
        _draw_centered(draw, subtitle, (width // 2, height // 2 + 20), foreground)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _draw_centered(draw: "ImageDraw.ImageDraw", text: str, center: tuple, fill: tuple) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text)
    x = center[0] - (right - left) // 2
    y = center[1] - (bottom - top) // 2
    draw.text((x, y), text, fill=fill)
